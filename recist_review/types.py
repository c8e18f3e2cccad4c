"""Core type definitions for the RECIST review pipeline.

This module defines the enums, lookup tables and result containers shared
by the extractors, the derivation engine and the report renderer.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Optional

import pandas as pd


class ResponseCategory(Enum):
    """RECIST v1.1 overall response categories recorded on the CRF.

    The value is the short code used in the derived table.
    """
    PD = "PD"   # Progressive Disease
    CR = "CR"   # Complete Response
    PR = "PR"   # Partial Response
    SD = "SD"   # Stable Disease
    NN = "Non-CR/Non-PD"  # non-target only disease

    @classmethod
    def all(cls) -> list["ResponseCategory"]:
        """Return all categories in reporting order."""
        return [cls.PD, cls.CR, cls.PR, cls.SD, cls.NN]

    @classmethod
    def from_code(cls, code: str) -> "ResponseCategory":
        """Get ResponseCategory from its short code."""
        for category in cls:
            if category.value == code:
                return category
        raise ValueError(f"Invalid response code: {code}")

    @property
    def key(self) -> str:
        """Lowercase key used in indicator and marker column names."""
        return self.name.lower()

    @property
    def indicator_column(self) -> str:
        """Boolean column that is True where the visit has this category."""
        return f"is_{self.key}"

    @property
    def marker_column(self) -> str:
        """Column holding the event number at which this category was assigned."""
        return f"{self.key}_this_ta"


# Free-text CRF labels -> short codes. Anything else passes through unchanged.
RESPONSE_LABELS = MappingProxyType({
    "Progressive Disease (PD)": ResponseCategory.PD.value,
    "Complete Response (CR)": ResponseCategory.CR.value,
    "Partial Response (PR)": ResponseCategory.PR.value,
    "Stable Disease (SD)": ResponseCategory.SD.value,
    "Non-CR/Non-PD": ResponseCategory.NN.value,
})

# Computed-only category for visits without a measurable sum
NOT_EVALUABLE = "NE"

# Color palette for response markers
RESPONSE_COLORS = MappingProxyType({
    ResponseCategory.PD: "#D62728",   # Red
    ResponseCategory.CR: "#1F77B4",   # Blue
    ResponseCategory.PR: "#2CA02C",   # Green
    ResponseCategory.SD: "#FF7F0E",   # Orange
    ResponseCategory.NN: "#9467BD",   # Purple
})

RESPONSE_MARKERS = MappingProxyType({
    ResponseCategory.PD: "X",
    ResponseCategory.CR: "*",
    ResponseCategory.PR: "^",
    ResponseCategory.SD: "o",
    ResponseCategory.NN: "D",
})

# Baseline disease status symbols (timeline x = 0)
BASELINE_MARKERS = MappingProxyType({
    "baseline_target": {"marker": "s", "facecolor": "black", "label": "Measurable baseline"},
    "baseline_nontarget": {"marker": "s", "facecolor": "none", "label": "Non-measurable baseline"},
})


class AnomalyType(Enum):
    """Data-quality anomalies surfaced for manual review."""
    DUPLICATE_VISIT = "duplicate_visit"
    UNMAPPED_RESPONSE = "unmapped_response"
    UNDEFINED_PERCENT_CHANGE = "undefined_percent_change"
    RESPONSE_DISCORDANT = "response_discordant"
    INVALID_SUBJECT_ID = "invalid_subject_id"


@dataclass
class ExtractedInputs:
    """Tables produced by the extractors, ready for derivation.

    Attributes:
        cohort: Intention-to-Treat subject identifiers
        baseline: One row per subject at event 0
        followup: One row per (subject, event, date) after baseline
        new_lesions: First new-lesion visit per subject
        responses: Investigator-recorded responses per (subject, event)
    """
    cohort: set[str]
    baseline: pd.DataFrame
    followup: pd.DataFrame
    new_lesions: pd.DataFrame
    responses: pd.DataFrame


@dataclass
class ReviewResult:
    """Complete output of one pipeline run.

    Attributes:
        assessments: Derived per-visit assessment table
        anomalies: Long-format anomaly table (one row per finding)
        figure_paths: Rendered per-site figure paths keyed by site code
        workbook_path: Path of the written output workbook, if saved
    """
    assessments: pd.DataFrame
    anomalies: pd.DataFrame
    figure_paths: dict[str, str] = field(default_factory=dict)
    workbook_path: Optional[str] = None

    @property
    def num_subjects(self) -> int:
        return self.assessments["subject"].nunique() if len(self.assessments) else 0

    @property
    def sites(self) -> list[str]:
        """Sites present in the derived table, sorted."""
        if "site" not in self.assessments.columns:
            return []
        return sorted(self.assessments["site"].dropna().unique().tolist())

    def summary(self) -> str:
        """Return a human-readable summary of the run."""
        df = self.assessments
        lines = [
            "RECIST REVIEW SUMMARY",
            "=" * 60,
            f"Subjects: {self.num_subjects}",
            f"Visits: {len(df)}",
            f"Sites: {', '.join(self.sites) if self.sites else '-'}",
            "",
            "RESPONSES BY SITE",
            "-" * 40,
        ]
        for site in self.sites:
            site_df = df[df["site"] == site]
            counts = site_df["response"].value_counts()
            parts = [f"{c.value}={int(counts.get(c.value, 0))}" for c in ResponseCategory.all()]
            lines.append(f"  {site}: {', '.join(parts)}")

        lines.extend(["", "ANOMALIES", "-" * 40])
        if len(self.anomalies) == 0:
            lines.append("  none")
        else:
            for anomaly, count in self.anomalies["anomaly"].value_counts().sort_index().items():
                lines.append(f"  {anomaly}: {count}")
        return "\n".join(lines)
