"""Unit tests for the anomaly scan."""

import numpy as np
import pandas as pd

from recist_review.anomalies import ANOMALY_COLUMNS, find_anomalies, find_duplicate_visits


def make_assessments(rows):
    """rows: (subject, site, event_num, sld, baseline_sld, pct, overall, response, unmapped, discordant, derived)."""
    return pd.DataFrame(rows, columns=[
        "subject", "site", "event_num", "sum_of_lesions", "baseline_sld",
        "percent_change_from_baseline", "overall_response", "response",
        "response_unmapped", "response_discordant", "derived_overall_response",
    ])


class TestFindAnomalies:
    """Tests for find_anomalies."""

    def test_clean_table_has_no_findings(self):
        """A consistent table should produce an empty report."""
        df = make_assessments([
            ("0101-001", "0101", 0, 30.0, 30.0, 0.0, np.nan, np.nan, False, False, np.nan),
            ("0101-001", "0101", 1, 24.0, 30.0, -20.0, "Stable Disease (SD)", "SD", False, False, "SD"),
        ])

        anomalies = find_anomalies(df)

        assert len(anomalies) == 0
        assert list(anomalies.columns) == ANOMALY_COLUMNS

    def test_each_anomaly_type_reported(self):
        """Every defect should produce one finding of its type."""
        df = make_assessments([
            ("0101-001", "0101", 1, 24.0, 30.0, -20.0, "Stable Disease (SD)", "SD", False, False, "SD"),
            ("0101-001", "0101", 1, 25.0, 30.0, -16.7, "Stable Disease (SD)", "SD", False, False, "SD"),
            ("0101-002", "0101", 1, 5.0, 0.0, np.nan, "Not Evaluable", "Not Evaluable", True, False, "PD"),
            ("0101-003", "0101", 1, 20.0, 30.0, -33.3, "Stable Disease (SD)", "SD", False, True, "PR"),
            ("XX-9", np.nan, 1, 20.0, 20.0, 0.0, "Stable Disease (SD)", "SD", False, False, "SD"),
        ])

        anomalies = find_anomalies(df)
        counts = anomalies["anomaly"].value_counts().to_dict()

        assert counts == {
            "duplicate_visit": 1,
            "unmapped_response": 1,
            "undefined_percent_change": 1,
            "response_discordant": 1,
            "invalid_subject_id": 1,
        }

    def test_duplicates_are_reported_not_removed(self):
        """The scan should leave the input table untouched."""
        df = make_assessments([
            ("0101-001", "0101", 2, 24.0, 30.0, -20.0, "Stable Disease (SD)", "SD", False, False, "SD"),
            ("0101-001", "0101", 2, 24.0, 30.0, -20.0, "Stable Disease (SD)", "SD", False, False, "SD"),
        ])

        dups = find_duplicate_visits(df)

        assert len(df) == 2
        assert dups["detail"].iloc[0] == "rows=2"
        assert dups["event_num"].iloc[0] == 2
