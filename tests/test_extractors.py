"""Unit tests for CRF table extractors."""

import numpy as np
import pandas as pd

from recist_review.config import ColumnNames, CohortConfig
from recist_review.data.extractors import (
    extract_baseline,
    extract_cohort,
    extract_followup,
    extract_new_lesions,
    extract_responses,
)


class TestExtractCohort:
    """Tests for the Intention-to-Treat cohort."""

    def test_dosed_at_first_event(self):
        """Only subjects dosed at event 1 should be in the cohort."""
        medication = pd.DataFrame({
            "subject": ["0101-001", "0101-002", "0101-003", "0101-003", "0102-001"],
            "event_num": [1, 1, 1, 2, 2],
            "dose_taken": ["Yes", "No", "No", "Yes", "Yes"],
        })

        assert extract_cohort(medication) == {"0101-001"}

    def test_custom_columns_and_yes_value(self):
        """Configured column names and yes value should be honored."""
        medication = pd.DataFrame({
            "patient": [" 0101-001 ", "0101-002"],
            "visit": [1, 1],
            "was_dose_taken": ["Y", "N"],
        })
        columns = ColumnNames(subject="patient", event_num="visit", dose_taken="was_dose_taken")

        cohort = extract_cohort(medication, columns, CohortConfig(yes_value="Y"))

        assert cohort == {"0101-001"}


class TestExtractBaseline:
    """Tests for baseline extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.target = pd.DataFrame({
            "subject": ["P1", "P1", "P2", "P3"],
            "evaluation_date": ["2024-01-05", "2024-01-05", "2024-01-06", "2024-01-06"],
            "longest_diameter": [10, 20, np.nan, 15],
        })
        self.nontarget = pd.DataFrame({
            "subject": ["P1", "P4", "P5"],
            "evaluation_date": ["2024-01-05", "2024-01-07", "2024-01-08"],
            "non_target_lesion_present": ["Yes", "Yes", "No"],
        })
        self.cohort = {"P1", "P2", "P4", "P5"}

    def test_sum_of_lesions(self):
        """Target diameters should be summed per subject."""
        baseline = extract_baseline(self.target, self.nontarget, self.cohort).set_index("subject")

        assert baseline.loc["P1", "sum_of_lesions"] == 30
        assert baseline.loc["P1", "baseline_target"] == 0
        assert baseline.loc["P1", "event_num"] == 0

    def test_subjects_without_sum_or_nontarget_dropped(self):
        """No lesion sum, no non-target lesion or outside cohort: no baseline row."""
        baseline = extract_baseline(self.target, self.nontarget, self.cohort)

        assert sorted(baseline["subject"]) == ["P1", "P4"]

    def test_baseline_flags_mutually_exclusive(self):
        """Non-measurable flag should be set only without measurable disease."""
        baseline = extract_baseline(self.target, self.nontarget, self.cohort).set_index("subject")

        assert pd.isna(baseline.loc["P1", "baseline_nontarget"])
        assert baseline.loc["P4", "baseline_nontarget"] == 0
        assert pd.isna(baseline.loc["P4", "baseline_target"])
        assert pd.isna(baseline.loc["P4", "sum_of_lesions"])

    def test_date_falls_back_to_nontarget(self):
        """Evaluation date should come from the non-target sheet when needed."""
        baseline = extract_baseline(self.target, self.nontarget, self.cohort).set_index("subject")

        assert baseline.loc["P1", "evaluation_date"] == pd.Timestamp("2024-01-05")
        assert baseline.loc["P4", "evaluation_date"] == pd.Timestamp("2024-01-07")

    def test_inputs_not_mutated(self):
        """Extractors should not modify their inputs."""
        before = self.target.copy()
        extract_baseline(self.target, self.nontarget, self.cohort)

        pd.testing.assert_frame_equal(self.target, before)


class TestExtractFollowup:
    """Tests for follow-up extraction."""

    def test_outer_join_keeps_single_sheet_visits(self):
        """Visits on only one sheet should be kept."""
        target = pd.DataFrame({
            "subject": ["P1", "P1", "P1"],
            "event_num": [1, 1, 2],
            "evaluation_date": ["2024-03-01", "2024-03-01", "2024-05-01"],
            "longest_diameter": [12, 8, 5],
        })
        nontarget = pd.DataFrame({
            "subject": ["P1", "P1", "P1"],
            "event_num": [1, 1, 3],
            "evaluation_date": ["2024-03-01", "2024-03-01", "2024-07-01"],
            "non_target_lesion_present": ["Yes", "Yes", "Yes"],
        })

        followup = extract_followup(target, nontarget)

        assert followup["event_num"].tolist() == [1, 2, 3]
        assert followup["sum_of_lesions"].iloc[0] == 20
        assert followup["sum_of_lesions"].iloc[1] == 5
        assert pd.isna(followup["sum_of_lesions"].iloc[2])
        assert followup["non_target_lesion_present"].iloc[0] == "Yes"
        assert pd.isna(followup["non_target_lesion_present"].iloc[1])


class TestExtractNewLesions:
    """Tests for new-lesion extraction."""

    def test_first_new_lesion_per_subject(self):
        """Only the earliest new lesion per subject should be kept."""
        new_lesions = pd.DataFrame({
            "subject": ["P1", "P1", "P2"],
            "event_num": [3, 2, 4],
            "evaluation_date": ["2024-07-01", "2024-05-01", "2024-09-01"],
        })

        result = extract_new_lesions(new_lesions).set_index("subject")

        assert len(result) == 2
        assert result.loc["P1", "event_num"] == 2
        assert (result["new_lesions"] == "Yes").all()


class TestExtractResponses:
    """Tests for response extraction."""

    def test_verbatim_projection(self):
        """Response text should be copied unchanged."""
        responses = pd.DataFrame({
            "subject": ["P1"],
            "event_num": [1],
            "target_lesion_response": ["Partial Response (PR)"],
            "non_target_lesion_response": ["Non-CR/Non-PD"],
            "overall_response": ["Partial Response (PR)"],
            "comments": ["ignored"],
        })

        result = extract_responses(responses)

        assert "comments" not in result.columns
        assert result["overall_response"].iloc[0] == "Partial Response (PR)"
