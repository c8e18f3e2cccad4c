"""Configuration for the RECIST review pipeline.

Input workbook locations, canonical column names, derivation rules and output
settings are grouped into dataclasses and loaded from a single YAML file.
"""

import yaml
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class SheetSpec:
    """Location of one CRF sheet.

    Attributes:
        path: Workbook path (relative paths resolve against the config file)
        sheet: Sheet name, matched exactly
        header_row: Zero-based row index of the header line
    """
    path: str
    sheet: str
    header_row: int = 0


@dataclass
class ColumnNames:
    """Canonical (snake_case) column names expected after header cleaning."""
    subject: str = "subject"
    event_num: str = "event_num"
    evaluation_date: str = "evaluation_date"
    dose_taken: str = "dose_taken"
    longest_diameter: str = "longest_diameter"
    non_target_present: str = "non_target_lesion_present"
    target_response: str = "target_lesion_response"
    non_target_response: str = "non_target_lesion_response"
    overall_response: str = "overall_response"


@dataclass
class CohortConfig:
    """Intention-to-Treat selection rule."""
    dose_event_num: int = 1
    yes_value: str = "Yes"


@dataclass
class DerivationConfig:
    """Derivation and RECIST cross-check rules.

    Attributes:
        excluded_subjects: Subjects dropped before derivation (known data gaps)
        site_pattern: Regex with one capture group extracting the site code
        date_format: Optional strptime format for evaluation dates
        pd_percent: Progression threshold, percent increase from nadir
        pd_absolute_mm: Minimum absolute increase from nadir for progression
        pr_percent: Response threshold, percent change from baseline
    """
    excluded_subjects: list[str] = field(default_factory=lambda: ["0103-004"])
    site_pattern: str = r"^(\d{4})-\d+$"
    date_format: Optional[str] = None
    pd_percent: float = 20.0
    pd_absolute_mm: float = 5.0
    pr_percent: float = -30.0


@dataclass
class OutputConfig:
    """Where and how results are written."""
    output_dir: str = "results"
    workbook_name: str = "recist_derived_assessments.xlsx"
    summary_name: str = "review_summary.txt"
    figure_dir: str = "figures"
    figure_dpi: int = 150
    render_figures: bool = True


INPUT_KEYS = (
    "medication",
    "baseline_target",
    "baseline_nontarget",
    "followup_target",
    "followup_nontarget",
    "new_lesions",
    "overall_response",
)


@dataclass
class ReviewConfig:
    """Configuration for the RECIST review pipeline.

    Attributes:
        inputs: SheetSpec per input key (see INPUT_KEYS)
        columns: Canonical column names
        cohort: ITT selection rule
        derivation: Derivation and cross-check rules
        output: Output settings
    """
    inputs: dict[str, SheetSpec] = field(default_factory=dict)
    columns: ColumnNames = field(default_factory=ColumnNames)
    cohort: CohortConfig = field(default_factory=CohortConfig)
    derivation: DerivationConfig = field(default_factory=DerivationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def sheet(self, key: str) -> SheetSpec:
        """Return the SheetSpec for an input key."""
        if key not in self.inputs:
            raise KeyError(f"No input configured for '{key}'. Configured: {sorted(self.inputs)}")
        return self.inputs[key]

    def validate(self):
        """Check that every input sheet is configured."""
        missing = [k for k in INPUT_KEYS if k not in self.inputs]
        if missing:
            raise ValueError(f"Config missing required inputs: {missing}")

    @classmethod
    def from_dict(cls, config_dict: dict, base_dir: Optional[Path] = None) -> "ReviewConfig":
        """Build configuration from a nested dictionary.

        Args:
            config_dict: Dictionary with inputs/columns/cohort/derivation/output sections
            base_dir: Directory against which relative input paths are resolved

        Returns:
            ReviewConfig instance
        """
        kwargs = {}

        if "inputs" in config_dict:
            inputs = {}
            for key, spec in config_dict["inputs"].items():
                if key not in INPUT_KEYS:
                    logger.warning(f"Ignoring unknown input '{key}'")
                    continue
                spec = dict(spec)
                if base_dir is not None and not Path(spec["path"]).is_absolute():
                    spec["path"] = str(base_dir / spec["path"])
                inputs[key] = SheetSpec(**spec)
            kwargs["inputs"] = inputs

        sections = {
            "columns": ColumnNames,
            "cohort": CohortConfig,
            "derivation": DerivationConfig,
            "output": OutputConfig,
        }
        for name, section_cls in sections.items():
            if name in config_dict and config_dict[name]:
                kwargs[name] = _build_section(section_cls, config_dict[name])

        output = kwargs.setdefault("output", OutputConfig())
        if base_dir is not None and not Path(output.output_dir).is_absolute():
            output.output_dir = str(Path(base_dir) / output.output_dir)

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReviewConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to YAML config file

        Returns:
            ReviewConfig instance
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")

        with open(path, "r") as f:
            config_dict = yaml.safe_load(f) or {}

        return cls.from_dict(config_dict, base_dir=path.parent)


def _build_section(section_cls, values: dict):
    """Instantiate a config section, rejecting unknown keys."""
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {section_cls.__name__} keys: {sorted(unknown)}")
    return section_cls(**values)
