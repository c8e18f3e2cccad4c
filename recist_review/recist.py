"""RECIST 1.1 cross-check of investigator-recorded responses.

The investigator's overall response is taken from the CRF as recorded. This
module recomputes a target-lesion category from the sum-of-diameters
arithmetic and combines it with the recorded non-target category and the
new-lesion flag, so that disagreements can be listed for manual review.
Nothing here overrides the CRF value.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from recist_review.types import NOT_EVALUABLE, RESPONSE_LABELS, ResponseCategory

logger = logging.getLogger(__name__)

# Codes the investigator may record and the cross-check can compare against
COMPARABLE_CODES = tuple(c.value for c in ResponseCategory.all())

# Valid non-target lesion categories
NON_TARGET_CODES = (
    ResponseCategory.CR.value,
    ResponseCategory.NN.value,
    ResponseCategory.PD.value,
    NOT_EVALUABLE,
)

NOT_EVALUABLE_LABELS = ("Not Evaluable", "Not Evaluable (NE)", "Not Evaluated")


@dataclass(frozen=True)
class RECISTThresholds:
    """RECIST 1.1 target-lesion thresholds.

    Attributes:
        pd_percent: Minimum percent increase from nadir for progression
        pd_absolute_mm: Minimum absolute increase from nadir for progression
        pr_percent: Maximum percent change from baseline for partial response
    """
    pd_percent: float = 20.0
    pd_absolute_mm: float = 5.0
    pr_percent: float = -30.0

    def __post_init__(self):
        if self.pd_percent <= 0:
            raise ValueError(f"pd_percent must be positive, got {self.pd_percent}")
        if self.pd_absolute_mm < 0:
            raise ValueError(f"pd_absolute_mm must be non-negative, got {self.pd_absolute_mm}")
        if self.pr_percent >= 0:
            raise ValueError(f"pr_percent must be negative, got {self.pr_percent}")


def classify_target_response(df: pd.DataFrame, thresholds: RECISTThresholds) -> pd.Series:
    """Target-lesion category per row from the SLD columns.

    NE when the sum is missing, CR when it is 0, PD on a relative and
    absolute increase from nadir (any increase of at least the absolute
    threshold counts once the nadir is 0), PR on the relative decrease from
    baseline, otherwise SD.
    """
    sld = df["sum_of_lesions"]
    change_nadir = df["change_from_nadir"]
    pct_nadir = df["percent_change_from_nadir"]
    pct_baseline = df["percent_change_from_baseline"]

    absolute_increase = change_nadir >= thresholds.pd_absolute_mm
    relative_increase = (pct_nadir >= thresholds.pd_percent) | (df["nadir"] == 0)

    conditions = [
        sld.isna(),
        sld == 0,
        absolute_increase & relative_increase,
        pct_baseline <= thresholds.pr_percent,
    ]
    choices = [
        NOT_EVALUABLE,
        ResponseCategory.CR.value,
        ResponseCategory.PD.value,
        ResponseCategory.PR.value,
    ]
    result = np.select(
        [c.fillna(False).astype(bool) for c in conditions],
        choices,
        default=ResponseCategory.SD.value,
    )
    return pd.Series(result, index=df.index, dtype=object)


def normalize_non_target_response(values: pd.Series) -> pd.Series:
    """Map non-target CRF labels to CR, Non-CR/Non-PD, PD or NE.

    Blank cells stay missing (no non-target disease recorded). Any other
    text, including PR/SD labels, is not a valid non-target category and
    becomes NE.
    """
    labels = {
        label: code for label, code in RESPONSE_LABELS.items() if code in NON_TARGET_CODES
    }
    labels.update({code: code for code in NON_TARGET_CODES})
    labels.update({label: NOT_EVALUABLE for label in NOT_EVALUABLE_LABELS})

    stripped = values.where(values.isna(), values.astype(str).str.strip())
    codes = stripped.map(labels)
    return codes.where(stripped.isna() | codes.notna(), NOT_EVALUABLE)


def after_first_new_lesion(df: pd.DataFrame) -> pd.Series:
    """True from each subject's first new-lesion visit onward."""
    if "new_lesions" not in df.columns:
        return pd.Series(False, index=df.index)

    events = pd.to_numeric(df["event_num"], errors="coerce").astype(float)
    flagged = df["new_lesions"].eq("Yes") & events.notna()
    first = events[flagged].groupby(df.loc[flagged, "subject"]).min()
    first_event = df["subject"].map(first).astype(float)
    return (events >= first_event).fillna(False).astype(bool)


def add_derived_response(df: pd.DataFrame, thresholds: RECISTThresholds) -> pd.DataFrame:
    """Add derived_target_response, derived_overall_response and response_discordant.

    The overall category follows the RECIST 1.1 decision table:

    - PD once a new lesion has appeared (carried to every later visit), or
      when the target or non-target category is PD
    - the non-target category for subjects without measurable baseline
      disease (NE when it is missing)
    - NE when the target category is NE
    - PR when targets are CR but non-target disease remains (Non-CR/Non-PD
      or NE)
    - otherwise the target category

    Baseline rows carry no derived response.
    """
    out = df.copy()
    is_baseline = out["event_num"].eq(0).fillna(False).astype(bool)

    target = classify_target_response(out, thresholds)
    target = target.where(~is_baseline)

    if "non_target_lesion_response" in out.columns:
        non_target = normalize_non_target_response(out["non_target_lesion_response"])
    else:
        non_target = pd.Series(np.nan, index=out.index, dtype=object)

    pd_code = ResponseCategory.PD.value
    cr_code = ResponseCategory.CR.value
    conditions = [
        after_first_new_lesion(out) | (target == pd_code) | (non_target == pd_code),
        out["baseline_sld"].isna(),
        target == NOT_EVALUABLE,
        (target == cr_code) & non_target.notna() & (non_target != cr_code),
    ]
    choices = [
        pd_code,
        non_target.fillna(NOT_EVALUABLE).to_numpy(dtype=object),
        NOT_EVALUABLE,
        ResponseCategory.PR.value,
    ]
    overall = np.select(
        [c.fillna(False).astype(bool).to_numpy() for c in conditions],
        choices,
        default=target.to_numpy(dtype=object),
    )
    overall = pd.Series(overall, index=out.index, dtype=object).where(~is_baseline)

    out["derived_non_target_response"] = non_target.where(~is_baseline)
    out["derived_target_response"] = target
    out["derived_overall_response"] = overall

    recorded = out["response"]
    comparable = (
        recorded.isin(COMPARABLE_CODES)
        & overall.notna()
        & (overall != NOT_EVALUABLE)
        & ~is_baseline
    )
    out["response_discordant"] = comparable & (recorded != overall)

    n_discordant = int(out["response_discordant"].sum())
    if n_discordant:
        logger.warning(f"{n_discordant} visits where the recorded response differs from RECIST arithmetic")

    return out
