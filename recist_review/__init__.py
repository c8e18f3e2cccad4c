"""RECIST review: tumor-response derivation from clinical-trial CRF exports.

Derives per-visit RECIST v1.1 assessments (sum of diameters, change from
baseline and nadir, normalized investigator response) from spreadsheet
exports and renders per-site timeline and spider charts for manual review.
"""

__version__ = "0.1.0"
__author__ = "RECIST Review Team"

from recist_review.types import (
    ResponseCategory,
    AnomalyType,
    ExtractedInputs,
    ReviewResult,
)

__all__ = [
    "ResponseCategory",
    "AnomalyType",
    "ExtractedInputs",
    "ReviewResult",
]
