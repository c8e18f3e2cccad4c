"""Response derivation engine.

Joins the extracted baseline, follow-up, new-lesion and response tables into
one row per (subject, visit) and derives:

1. Baseline sum of lesion diameters and change from baseline
2. Running nadir and change from nadir
3. Normalized investigator response with per-category indicators
4. Visit markers used to place response symbols on the timeline chart
5. Site code from the subject identifier
6. RECIST 1.1 cross-check of the investigator response

Every step returns a new DataFrame. Data-quality defects such as duplicate
visits are left in place for the anomaly scan rather than resolved here.
"""

import re
import logging
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from recist_review.config import DerivationConfig
from recist_review.recist import RECISTThresholds, add_derived_response
from recist_review.types import ExtractedInputs, ResponseCategory, RESPONSE_LABELS

logger = logging.getLogger(__name__)

KEYS = ["subject", "event_num"]
VISIT_KEYS = ["subject", "event_num", "evaluation_date"]

OUTPUT_COLUMNS = [
    "site", "subject", "event_num", "evaluation_date",
    "baseline_target", "baseline_nontarget", "non_target_lesion_present",
    "sum_of_lesions", "baseline_sld", "change_from_baseline", "percent_change_from_baseline",
    "nadir", "change_from_nadir", "percent_change_from_nadir",
    "new_lesions",
    "target_lesion_response", "non_target_lesion_response", "overall_response",
    "response", "response_unmapped",
    "is_pd", "is_cr", "is_pr", "is_sd", "is_nn",
    "pd_this_ta", "cr_this_ta", "pr_this_ta", "sd_this_ta", "nn_this_ta",
    "derived_target_response", "derived_non_target_response",
    "derived_overall_response", "response_discordant",
]


def _align_keys(df: pd.DataFrame) -> pd.DataFrame:
    """Give join keys consistent dtypes so outer merges line up."""
    out = df.copy()
    if "event_num" in out.columns:
        out["event_num"] = pd.to_numeric(out["event_num"], errors="coerce").astype("Int64")
    if "evaluation_date" in out.columns:
        out["evaluation_date"] = pd.to_datetime(out["evaluation_date"], errors="coerce")
    if "sum_of_lesions" in out.columns:
        out["sum_of_lesions"] = pd.to_numeric(out["sum_of_lesions"], errors="coerce").astype(float)
    return out


def percent_change(change: pd.Series, denominator: pd.Series) -> pd.Series:
    """change / denominator x 100, NaN where the denominator is zero or missing."""
    denominator = denominator.astype(float)
    return change.astype(float) * 100 / denominator.where(denominator != 0)


def running_nadir(subjects: Iterable, events: Iterable, values: Iterable) -> np.ndarray:
    """Running minimum of the sum of lesions per subject.

    Rows must be sorted by subject then event number. The accumulator resets
    on a new subject and at event 0; a missing value carries the previous
    nadir forward.

    Args:
        subjects: Subject identifier per row
        events: Event number per row
        values: Sum of lesion diameters per row

    Returns:
        Array of nadir values aligned with the input rows
    """
    nadirs = []
    current = np.nan
    previous = None

    for subject, event, value in zip(subjects, events, values):
        if subject != previous or (pd.notna(event) and event == 0):
            current = value if pd.notna(value) else np.nan
        elif pd.notna(value):
            current = value if pd.isna(current) else min(value, current)
        nadirs.append(current)
        previous = subject

    return np.array(nadirs, dtype=float)


def normalize_response(overall: pd.Series) -> tuple[pd.Series, pd.Series]:
    """Map CRF response labels to short codes.

    Unrecognized text passes through unchanged and is flagged.

    Returns:
        Tuple of (normalized codes, unmapped flag)
    """
    stripped = overall.where(overall.isna(), overall.astype(str).str.strip())
    codes = stripped.map(dict(RESPONSE_LABELS))
    unmapped = stripped.notna() & codes.isna()
    codes = codes.where(~unmapped, overall)

    if unmapped.any():
        labels = sorted(overall[unmapped].astype(str).unique())
        logger.warning(f"{int(unmapped.sum())} responses with unmapped text: {labels}")

    return codes, unmapped


def extract_site(subjects: pd.Series, pattern: str) -> pd.Series:
    """Extract the site code from subject identifiers.

    The pattern must contain exactly one capture group, e.g. ``^(\\d{4})-\\d+$``
    for "0101-004" -> "0101". Identifiers that do not match get NaN.
    """
    regex = re.compile(pattern)
    if regex.groups != 1:
        raise ValueError(f"site_pattern must have exactly one capture group, got {regex.groups}: {pattern}")

    sites = subjects.astype(str).str.extract(pattern, expand=False)
    sites = sites.where(subjects.notna())

    invalid = subjects.notna() & sites.isna()
    if invalid.any():
        bad = sorted(subjects[invalid].astype(str).unique())
        logger.warning(f"{len(bad)} subject ids do not match site pattern {pattern}: {bad}")

    return sites


class ResponseDerivationEngine:
    """Derive per-visit RECIST assessments from the extracted CRF tables.

    Usage:
        engine = ResponseDerivationEngine(DerivationConfig())
        assessments = engine.run(inputs)
    """

    def __init__(self, config: Optional[DerivationConfig] = None):
        """Initialize the derivation engine.

        Args:
            config: DerivationConfig with exclusions, site rule and thresholds
        """
        self.config = config or DerivationConfig()
        self.thresholds = RECISTThresholds(
            pd_percent=self.config.pd_percent,
            pd_absolute_mm=self.config.pd_absolute_mm,
            pr_percent=self.config.pr_percent,
        )

    def combine_measurements(self, baseline: pd.DataFrame, followup: pd.DataFrame) -> pd.DataFrame:
        """Union baseline and follow-up measurements, minus excluded subjects."""
        on = VISIT_KEYS + ["sum_of_lesions"]
        baseline = _align_keys(baseline)
        followup = _align_keys(followup)

        df = baseline.merge(followup, on=on, how="outer", suffixes=("_baseline", ""))
        overlap = (set(baseline.columns) & set(followup.columns)) - set(on)
        for col in sorted(overlap):
            df[col] = df[col].combine_first(df[f"{col}_baseline"])
            df = df.drop(columns=[f"{col}_baseline"])

        excluded = set(self.config.excluded_subjects)
        present = sorted(excluded & set(df["subject"].dropna()))
        if present:
            logger.info(f"Excluding subjects without usable baseline: {present}")
        df = df[~df["subject"].isin(excluded)]

        return df.sort_values(KEYS + ["evaluation_date"], kind="stable").reset_index(drop=True)

    def add_baseline_changes(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add baseline_sld, change_from_baseline and percent_change_from_baseline."""
        out = df.copy()
        is_baseline = out["event_num"].eq(0).fillna(False).astype(bool)
        baseline_sld = (
            out[is_baseline]
            .drop_duplicates(subset=["subject"], keep="first")
            .set_index("subject")["sum_of_lesions"]
        )
        out["baseline_sld"] = out["subject"].map(baseline_sld).astype(float)
        out["change_from_baseline"] = out["sum_of_lesions"] - out["baseline_sld"]
        out["percent_change_from_baseline"] = percent_change(
            out["change_from_baseline"], out["baseline_sld"]
        )
        return out

    def add_nadir_changes(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add nadir, change_from_nadir and percent_change_from_nadir."""
        out = df.sort_values(KEYS + ["evaluation_date"], kind="stable").reset_index(drop=True)
        out["nadir"] = running_nadir(out["subject"], out["event_num"], out["sum_of_lesions"])
        out["change_from_nadir"] = out["sum_of_lesions"] - out["nadir"]
        out["percent_change_from_nadir"] = percent_change(out["change_from_nadir"], out["nadir"])
        return out

    def merge_new_lesions(self, df: pd.DataFrame, new_lesions: pd.DataFrame) -> pd.DataFrame:
        """Attach first-new-lesion flags; visits without one get "No"."""
        new_lesions = _align_keys(new_lesions)[VISIT_KEYS + ["new_lesions"]]
        new_lesions = new_lesions[~new_lesions["subject"].isin(self.config.excluded_subjects)]
        out = df.merge(new_lesions, on=VISIT_KEYS, how="outer")
        out["new_lesions"] = out["new_lesions"].fillna("No")
        return out

    def merge_responses(self, df: pd.DataFrame, responses: pd.DataFrame) -> pd.DataFrame:
        """Attach investigator-recorded responses by (subject, event)."""
        responses = _align_keys(responses)
        responses = responses[~responses["subject"].isin(self.config.excluded_subjects)]
        return df.merge(responses, on=KEYS, how="outer")

    def add_response_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """Normalize the overall response and add indicator/marker columns."""
        out = df.copy()
        if "overall_response" not in out.columns:
            out["overall_response"] = np.nan

        out["response"], out["response_unmapped"] = normalize_response(out["overall_response"])

        for category in ResponseCategory.all():
            indicator = (out["response"] == category.value).fillna(False).astype(bool)
            out[category.indicator_column] = indicator
            out[category.marker_column] = out["event_num"].where(indicator)

        return out

    def run(self, inputs: ExtractedInputs) -> pd.DataFrame:
        """Execute the full derivation.

        Args:
            inputs: Tables from the extractors plus the ITT cohort

        Returns:
            Derived assessment table, one row per (subject, visit)
        """
        df = self.combine_measurements(inputs.baseline, inputs.followup)
        logger.debug(f"Combined measurements: {df.shape}")

        df = self.add_baseline_changes(df)
        df = self.add_nadir_changes(df)
        df = self.merge_new_lesions(df, inputs.new_lesions)
        df = self.merge_responses(df, inputs.responses)

        undated = df["evaluation_date"].isna()
        if undated.any():
            logger.info(f"Dropping {int(undated.sum())} rows without an evaluation date")
        df = df[~undated]

        df = self.add_response_indicators(df)
        df["site"] = extract_site(df["subject"], self.config.site_pattern)

        before = df["subject"].nunique()
        df = df[df["subject"].isin(inputs.cohort)]
        dropped = before - df["subject"].nunique()
        if dropped:
            logger.info(f"Dropped {dropped} subjects outside the ITT cohort")

        df = add_derived_response(df, self.thresholds)

        for col in OUTPUT_COLUMNS:
            if col not in df.columns:
                df[col] = np.nan
        extra = [c for c in df.columns if c not in OUTPUT_COLUMNS]
        df = df[OUTPUT_COLUMNS + extra]

        df = df.sort_values(KEYS + ["evaluation_date"], kind="stable").reset_index(drop=True)
        logger.info(f"Derived {len(df)} assessments for {df['subject'].nunique()} subjects")
        return df
