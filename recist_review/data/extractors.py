"""Extract cohort, baseline, follow-up, new-lesion and response tables.

Each extractor takes a sheet already loaded by WorkbookLoader and returns a
new DataFrame keyed by subject/event. Extractors never mutate their inputs
and never resolve duplicates beyond the collapse each step calls for; any
leftover duplication is reported later by the anomaly scan.

Output column names are always the canonical ones (the ColumnNames
defaults), whatever the configured source headers are.
"""

import logging
from dataclasses import fields
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from recist_review.config import ColumnNames, CohortConfig

logger = logging.getLogger(__name__)

CANONICAL = ColumnNames()

BASELINE_SENTINEL = 0


def standardize(df: pd.DataFrame, columns: ColumnNames) -> pd.DataFrame:
    """Rename configured column names to the canonical ones and tidy keys.

    Subject identifiers are stripped strings and event numbers become a
    nullable integer column.
    """
    rename = {}
    for f in fields(ColumnNames):
        source = getattr(columns, f.name)
        target = getattr(CANONICAL, f.name)
        if source != target and source in df.columns:
            rename[source] = target
    out = df.rename(columns=rename)

    subject = CANONICAL.subject
    if subject in out.columns:
        ids = out[subject]
        out[subject] = ids.where(ids.isna(), ids.astype(str).str.strip())

    event = CANONICAL.event_num
    if event in out.columns:
        out[event] = pd.to_numeric(out[event], errors="coerce").astype("Int64")

    return out


def parse_dates(df: pd.DataFrame, date_format: Optional[str] = None) -> pd.DataFrame:
    """Parse the evaluation date column; unparseable values become NaT."""
    out = df.copy()
    col = CANONICAL.evaluation_date
    if col in out.columns:
        out[col] = pd.to_datetime(out[col], format=date_format, errors="coerce")
        bad = out[col].isna() & df[col].notna()
        if bad.any():
            logger.warning(f"{int(bad.sum())} evaluation dates could not be parsed")
    return out


def restrict_to_cohort(df: pd.DataFrame, cohort: Iterable[str]) -> pd.DataFrame:
    """Keep rows whose subject is in the cohort."""
    return df[df[CANONICAL.subject].isin(set(cohort))].copy()


def _is_yes(series: pd.Series, yes_value: str) -> pd.Series:
    """Case- and whitespace-insensitive match against the CRF "yes" value."""
    return series.astype(str).str.strip().str.lower() == yes_value.strip().lower()


def _sum_diameters(df: pd.DataFrame, keys: list[str]) -> pd.DataFrame:
    """Sum longest diameters per key and collapse to one row per key.

    A key whose diameters are all missing sums to NaN, not 0.
    """
    out = df.copy()
    diameters = pd.to_numeric(out[CANONICAL.longest_diameter], errors="coerce")
    out["sum_of_lesions"] = diameters.groupby([out[k] for k in keys]).transform(
        lambda s: s.sum(min_count=1)
    )
    return out.drop_duplicates(subset=keys, keep="first")


# =========================================
# Cohort
# =========================================

def extract_cohort(
    medication: pd.DataFrame,
    columns: ColumnNames = CANONICAL,
    cohort_config: Optional[CohortConfig] = None,
) -> set[str]:
    """Return the Intention-to-Treat subjects.

    A subject is in the cohort when the medication-intake sheet records a
    dose taken at the first dosing event (cycle 1 day 1).
    """
    cohort_config = cohort_config or CohortConfig()
    df = standardize(medication, columns)

    dosed = (df[CANONICAL.event_num] == cohort_config.dose_event_num) & _is_yes(
        df[CANONICAL.dose_taken], cohort_config.yes_value
    )
    cohort = set(df.loc[dosed.fillna(False), CANONICAL.subject].dropna())

    logger.info(f"ITT cohort: {len(cohort)} subjects dosed at event {cohort_config.dose_event_num}")
    return cohort


# =========================================
# Baseline
# =========================================

def extract_baseline_target(
    target: pd.DataFrame,
    cohort: Iterable[str],
    columns: ColumnNames = CANONICAL,
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """Baseline sum of target lesion diameters per subject."""
    df = standardize(target, columns)
    df = _sum_diameters(df, [CANONICAL.subject])
    df = parse_dates(df, date_format)

    no_sum = df["sum_of_lesions"].isna()
    if no_sum.any():
        logger.debug(f"Dropping {int(no_sum.sum())} baseline subjects without a lesion sum")
    df = df[~no_sum].copy()

    df[CANONICAL.event_num] = pd.array([BASELINE_SENTINEL] * len(df), dtype="Int64")
    df["baseline_target"] = BASELINE_SENTINEL
    df = restrict_to_cohort(df, cohort)

    return df[[
        CANONICAL.subject, CANONICAL.event_num, CANONICAL.evaluation_date,
        "sum_of_lesions", "baseline_target",
    ]].reset_index(drop=True)


def extract_baseline_nontarget(
    nontarget: pd.DataFrame,
    cohort: Iterable[str],
    columns: ColumnNames = CANONICAL,
    yes_value: str = "Yes",
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """Subjects with a non-target lesion present at baseline."""
    df = standardize(nontarget, columns)
    df = df[_is_yes(df[CANONICAL.non_target_present], yes_value)]
    df = df.drop_duplicates(subset=[CANONICAL.subject], keep="first")
    df = parse_dates(df, date_format)
    df[CANONICAL.event_num] = pd.array([BASELINE_SENTINEL] * len(df), dtype="Int64")
    df = restrict_to_cohort(df, cohort)

    return df[[
        CANONICAL.subject, CANONICAL.event_num, CANONICAL.evaluation_date,
        CANONICAL.non_target_present,
    ]].reset_index(drop=True)


def merge_baseline(target: pd.DataFrame, nontarget: pd.DataFrame) -> pd.DataFrame:
    """Combine target and non-target baselines into one row per subject.

    The evaluation date comes from the target sheet when present. The
    non-measurable flag is set only for subjects without measurable disease,
    so baseline_target and baseline_nontarget are mutually exclusive.
    """
    keys = [CANONICAL.subject, CANONICAL.event_num]
    merged = target.merge(
        nontarget, on=keys, how="outer", suffixes=("_target", "_nontarget")
    )

    date = CANONICAL.evaluation_date
    merged[date] = merged[f"{date}_target"].combine_first(merged[f"{date}_nontarget"])
    merged = merged.drop(columns=[f"{date}_target", f"{date}_nontarget"])

    merged["baseline_nontarget"] = np.where(
        merged["baseline_target"].isna(), BASELINE_SENTINEL, np.nan
    )

    n_target = int(merged["baseline_target"].notna().sum())
    n_nontarget = int(merged["baseline_nontarget"].notna().sum())
    logger.info(f"Baseline: {n_target} measurable, {n_nontarget} non-measurable only")

    return merged.sort_values(keys).reset_index(drop=True)


def extract_baseline(
    target: pd.DataFrame,
    nontarget: pd.DataFrame,
    cohort: Iterable[str],
    columns: ColumnNames = CANONICAL,
    yes_value: str = "Yes",
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """Baseline record per subject from the screening target/non-target sheets."""
    cohort = set(cohort)
    return merge_baseline(
        extract_baseline_target(target, cohort, columns, date_format),
        extract_baseline_nontarget(nontarget, cohort, columns, yes_value, date_format),
    )


# =========================================
# Follow-up
# =========================================

def extract_followup(
    target: pd.DataFrame,
    nontarget: pd.DataFrame,
    columns: ColumnNames = CANONICAL,
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """Per-visit sum of diameters and non-target presence after baseline.

    Visits found on only one of the two sheets are kept, with the other
    sheet's fields missing.
    """
    keys = [CANONICAL.subject, CANONICAL.event_num]

    tl = standardize(target, columns)
    tl = _sum_diameters(tl, keys)
    tl = parse_dates(tl, date_format)
    tl = tl[keys + [CANONICAL.evaluation_date, "sum_of_lesions"]]

    ntl = standardize(nontarget, columns)
    ntl = ntl.drop_duplicates(subset=keys, keep="first")
    ntl = parse_dates(ntl, date_format)
    ntl_cols = keys + [CANONICAL.evaluation_date]
    if CANONICAL.non_target_present in ntl.columns:
        ntl_cols.append(CANONICAL.non_target_present)
    ntl = ntl[ntl_cols]

    merged = tl.merge(ntl, on=keys + [CANONICAL.evaluation_date], how="outer")
    logger.info(f"Follow-up: {len(tl)} target visits, {len(ntl)} non-target visits, {len(merged)} merged")

    return merged.sort_values(keys).reset_index(drop=True)


# =========================================
# New lesions
# =========================================

def extract_new_lesions(
    new_lesions: pd.DataFrame,
    columns: ColumnNames = CANONICAL,
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """First visit per subject at which a new lesion was recorded."""
    keys = [CANONICAL.subject, CANONICAL.event_num]
    df = standardize(new_lesions, columns)
    df = parse_dates(df, date_format)
    df = df.sort_values(keys, kind="stable")
    df = df.drop_duplicates(subset=[CANONICAL.subject], keep="first")
    df["new_lesions"] = "Yes"

    logger.info(f"New lesions: {len(df)} subjects with a first new lesion")
    return df[keys + [CANONICAL.evaluation_date, "new_lesions"]].reset_index(drop=True)


# =========================================
# Responses
# =========================================

def extract_responses(responses: pd.DataFrame, columns: ColumnNames = CANONICAL) -> pd.DataFrame:
    """Investigator-recorded responses per visit, verbatim."""
    df = standardize(responses, columns)
    cols = [
        CANONICAL.subject, CANONICAL.event_num, CANONICAL.target_response,
        CANONICAL.non_target_response, CANONICAL.overall_response,
    ]
    cols = [c for c in cols if c in df.columns]
    return df[cols].reset_index(drop=True)
