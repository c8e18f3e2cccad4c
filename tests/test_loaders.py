"""Unit tests for workbook loading and header cleaning."""

import pytest
import pandas as pd

from recist_review.config import SheetSpec
from recist_review.data.loaders import WorkbookLoader, clean_column_name, clean_columns


def write_workbook(path, sheets, banner="Protocol ABC-123 CRF export"):
    """Write sheets with one banner row above the header (header_row=1)."""
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name, index=False, startrow=1)
            writer.sheets[name].cell(row=1, column=1, value=banner)


class TestCleanColumnName:
    """Tests for header normalization."""

    @pytest.mark.parametrize("raw, expected", [
        ("Subject", "subject"),
        ("Event Num", "event_num"),
        ("EventNum", "event_num"),
        ("  Evaluation Date ", "evaluation_date"),
        ("Longest Diameter (mm)", "longest_diameter_mm"),
        ("Non-Target Lesion Present?", "non_target_lesion_present"),
        ("SUBJECT", "subject"),
        (3, "3"),
    ])
    def test_clean_column_name(self, raw, expected):
        """Headers should become lowercase snake_case."""
        assert clean_column_name(raw) == expected

    def test_duplicate_names_get_suffix(self):
        """Headers that collide after cleaning should stay distinct."""
        df = pd.DataFrame([[1, 2, 3]], columns=["Event Num", "event_num", "Other"])
        cleaned = clean_columns(df)

        assert list(cleaned.columns) == ["event_num", "event_num_2", "other"]
        assert list(df.columns) == ["Event Num", "event_num", "Other"]


class TestWorkbookLoader:
    """Tests for WorkbookLoader."""

    def setup_method(self):
        """Set up test fixtures."""
        self.df = pd.DataFrame({
            "Subject": ["0101-001", "0101-002"],
            "Event Num": [1, 1],
            "Dose Taken": ["Yes", "No"],
        })

    def test_load_with_header_offset(self, tmp_path):
        """Should skip banner rows and clean headers."""
        path = tmp_path / "med.xlsx"
        write_workbook(path, {"Dosing": self.df})

        with WorkbookLoader() as loader:
            df = loader.load(SheetSpec(path=str(path), sheet="Dosing", header_row=1))

        assert list(df.columns) == ["subject", "event_num", "dose_taken"]
        assert df["subject"].tolist() == ["0101-001", "0101-002"]

    def test_missing_file(self, tmp_path):
        """Should raise FileNotFoundError for a missing workbook."""
        loader = WorkbookLoader()

        with pytest.raises(FileNotFoundError, match="Workbook not found"):
            loader.load(SheetSpec(path=str(tmp_path / "missing.xlsx"), sheet="Dosing"))

    def test_missing_sheet(self, tmp_path):
        """Should raise KeyError naming the available sheets."""
        path = tmp_path / "med.xlsx"
        write_workbook(path, {"Dosing": self.df})
        loader = WorkbookLoader()

        with pytest.raises(KeyError, match="Available"):
            loader.load(SheetSpec(path=str(path), sheet="Exposure", header_row=1))

    def test_missing_required_columns(self, tmp_path):
        """Should raise ValueError listing missing columns."""
        path = tmp_path / "med.xlsx"
        write_workbook(path, {"Dosing": self.df})
        loader = WorkbookLoader()

        with pytest.raises(ValueError, match="missing required columns"):
            loader.load(
                SheetSpec(path=str(path), sheet="Dosing", header_row=1),
                required=["subject", "evaluation_date"],
            )

    def test_sheet_names(self, tmp_path):
        """Should list sheets of a workbook."""
        path = tmp_path / "ta.xlsx"
        write_workbook(path, {"Target Lesions": self.df, "New Lesions": self.df})
        loader = WorkbookLoader()

        assert loader.sheet_names(path) == ["Target Lesions", "New Lesions"]
