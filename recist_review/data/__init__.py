"""Data loading and extraction utilities for the RECIST review."""

from .loaders import WorkbookLoader, clean_column_name, clean_columns
from .extractors import (
    extract_cohort,
    extract_baseline,
    extract_followup,
    extract_new_lesions,
    extract_responses,
)

__all__ = [
    "WorkbookLoader",
    "clean_column_name",
    "clean_columns",
    "extract_cohort",
    "extract_baseline",
    "extract_followup",
    "extract_new_lesions",
    "extract_responses",
]
