"""Data-quality anomaly scan over the derived assessment table.

Findings are reported one per row so they can be filtered in a spreadsheet.
The scan only reads; nothing is corrected.
"""

import logging

import pandas as pd

from recist_review.types import AnomalyType

logger = logging.getLogger(__name__)

ANOMALY_COLUMNS = ["subject", "event_num", "anomaly", "detail"]


def _rows(df: pd.DataFrame, anomaly: AnomalyType, detail: pd.Series) -> pd.DataFrame:
    return pd.DataFrame({
        "subject": df["subject"].values,
        "event_num": df["event_num"].values,
        "anomaly": anomaly.value,
        "detail": detail.astype(str).values,
    })


def find_duplicate_visits(df: pd.DataFrame) -> pd.DataFrame:
    """(subject, event) pairs that appear on more than one row."""
    counts = df.groupby(["subject", "event_num"], dropna=False).size()
    dups = counts[counts > 1].rename("rows").reset_index()
    return _rows(dups, AnomalyType.DUPLICATE_VISIT, "rows=" + dups["rows"].astype(str))


def find_unmapped_responses(df: pd.DataFrame) -> pd.DataFrame:
    """Overall responses whose text did not match a known label."""
    hits = df[df["response_unmapped"].fillna(False).astype(bool)]
    return _rows(hits, AnomalyType.UNMAPPED_RESPONSE, hits["overall_response"])


def find_undefined_percent_changes(df: pd.DataFrame) -> pd.DataFrame:
    """Rows with a measured sum but no percent change from baseline."""
    hits = df[df["sum_of_lesions"].notna() & df["percent_change_from_baseline"].isna()]
    return _rows(hits, AnomalyType.UNDEFINED_PERCENT_CHANGE, "baseline_sld=" + hits["baseline_sld"].astype(str))


def find_discordant_responses(df: pd.DataFrame) -> pd.DataFrame:
    """Recorded responses that disagree with the RECIST arithmetic."""
    hits = df[df["response_discordant"].fillna(False).astype(bool)]
    detail = "recorded=" + hits["response"].astype(str) + " derived=" + hits["derived_overall_response"].astype(str)
    return _rows(hits, AnomalyType.RESPONSE_DISCORDANT, detail)


def find_invalid_subject_ids(df: pd.DataFrame) -> pd.DataFrame:
    """Subjects whose identifier did not yield a site code."""
    hits = df[df["site"].isna()].drop_duplicates(subset=["subject"])
    return _rows(hits, AnomalyType.INVALID_SUBJECT_ID, hits["subject"])


def find_anomalies(assessments: pd.DataFrame) -> pd.DataFrame:
    """Run every anomaly check.

    Args:
        assessments: Output of ResponseDerivationEngine.run

    Returns:
        DataFrame with columns subject, event_num, anomaly, detail
    """
    checks = [
        find_duplicate_visits,
        find_unmapped_responses,
        find_undefined_percent_changes,
        find_discordant_responses,
        find_invalid_subject_ids,
    ]
    frames = [check(assessments) for check in checks]
    frames = [f for f in frames if len(f)]

    if not frames:
        logger.info("Anomaly scan: no findings")
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    anomalies = pd.concat(frames, ignore_index=True)[ANOMALY_COLUMNS]
    for anomaly, count in anomalies["anomaly"].value_counts().sort_index().items():
        logger.warning(f"Anomaly scan: {count} x {anomaly}")
    return anomalies
