"""Spreadsheet loaders for the CRF exports.

Each CRF export is an Excel workbook with a fixed number of banner rows above
the header line. Sheets are read with pandas, headers are normalized to a
canonical snake_case form and required columns are validated before any
extraction runs.
"""

import re
import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from recist_review.config import SheetSpec

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_ALNUM = re.compile(r"[^0-9a-zA-Z]+")


def clean_column_name(name) -> str:
    """Normalize a header to lowercase snake_case.

    "Evaluation Date" -> "evaluation_date", "EventNum" -> "event_num",
    "Longest Diameter (mm)" -> "longest_diameter_mm".
    """
    text = str(name).strip()
    text = _CAMEL_BOUNDARY.sub("_", text)
    text = _NON_ALNUM.sub("_", text)
    return text.strip("_").lower()


def clean_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Return a copy of df with normalized column names.

    Duplicate names after cleaning get a numeric suffix (_2, _3, ...).
    """
    seen = {}
    names = []
    for col in df.columns:
        name = clean_column_name(col)
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        names.append(name)

    out = df.copy()
    out.columns = names
    return out


class WorkbookLoader:
    """Load CRF sheets from Excel workbooks.

    Workbooks are opened once and cached for the lifetime of the loader, so
    several sheets of the same export are read from a single file handle.
    """

    def __init__(self, engine: Optional[str] = None):
        """Initialize workbook loader.

        Args:
            engine: pandas Excel engine (None lets pandas choose by extension)
        """
        self.engine = engine
        self._books: dict[Path, pd.ExcelFile] = {}

    def _open(self, path: Path) -> pd.ExcelFile:
        if path not in self._books:
            if not path.exists():
                raise FileNotFoundError(f"Workbook not found: {path}")
            self._books[path] = pd.ExcelFile(path, engine=self.engine)
        return self._books[path]

    def sheet_names(self, path: Union[str, Path]) -> list[str]:
        """List sheet names in a workbook."""
        return list(self._open(Path(path)).sheet_names)

    def load(
        self,
        spec: SheetSpec,
        required: Optional[list[str]] = None,
    ) -> pd.DataFrame:
        """Load one sheet with cleaned headers.

        Args:
            spec: Workbook path, sheet name and header row offset
            required: Canonical column names that must be present

        Returns:
            DataFrame with snake_case columns and fully blank rows removed
        """
        path = Path(spec.path)
        book = self._open(path)

        if spec.sheet not in book.sheet_names:
            raise KeyError(
                f"Sheet '{spec.sheet}' not found in {path.name}. "
                f"Available: {book.sheet_names}"
            )

        df = pd.read_excel(book, sheet_name=spec.sheet, header=spec.header_row)
        df = clean_columns(df).dropna(how="all")

        if required:
            missing = [c for c in required if c not in df.columns]
            if missing:
                raise ValueError(
                    f"Sheet '{spec.sheet}' in {path.name} missing required columns: {missing}. "
                    f"Found: {list(df.columns)}"
                )

        logger.info(f"Loaded {path.name}[{spec.sheet}]: {len(df)} rows x {len(df.columns)} columns")
        return df

    def close(self):
        """Close all cached workbooks."""
        for book in self._books.values():
            book.close()
        self._books.clear()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
