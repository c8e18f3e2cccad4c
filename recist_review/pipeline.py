"""Main RECIST review pipeline.

This module integrates all components of the review:
1. Load the CRF sheets and extract the ITT cohort
2. Extract baseline, follow-up, new-lesion and response tables
3. Derive per-visit assessments and the RECIST cross-check
4. Scan the derived table for data-quality anomalies
5. Write the output workbook, the summary and one figure per site

The pipeline runs once over static spreadsheet snapshots. Re-running it on
unchanged inputs reproduces the same outputs.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from recist_review.anomalies import find_anomalies
from recist_review.config import ReviewConfig
from recist_review.data.extractors import (
    extract_baseline,
    extract_cohort,
    extract_followup,
    extract_new_lesions,
    extract_responses,
)
from recist_review.data.loaders import WorkbookLoader
from recist_review.derivation import ResponseDerivationEngine
from recist_review.types import ExtractedInputs, ReviewResult

logger = logging.getLogger(__name__)


class ReviewPipeline:
    """Orchestrates loading, derivation, anomaly scan and reporting.

    Usage:
        pipeline = ReviewPipeline.from_yaml("configs/default.yaml")
        result = pipeline.run()
        print(result.summary())
    """

    def __init__(self, config: ReviewConfig, loader: Optional[WorkbookLoader] = None):
        """Initialize the review pipeline.

        Args:
            config: ReviewConfig with inputs, columns and rules
            loader: WorkbookLoader to read sheets with (one is created if None)
        """
        config.validate()
        self.config = config
        self.loader = loader or WorkbookLoader()
        self.engine = ResponseDerivationEngine(config.derivation)

        logger.info(f"ReviewPipeline initialized with {len(config.inputs)} inputs")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReviewPipeline":
        """Create pipeline from YAML config file."""
        return cls(ReviewConfig.from_yaml(path))

    def _required(self, *names: str) -> list[str]:
        cols = self.config.columns
        return [getattr(cols, n) for n in names]

    def load_inputs(self) -> ExtractedInputs:
        """Read every configured sheet and run the extractors."""
        cfg = self.config
        cols = cfg.columns
        date_format = cfg.derivation.date_format
        yes = cfg.cohort.yes_value
        load = self.loader.load

        medication = load(cfg.sheet("medication"), self._required("subject", "event_num", "dose_taken"))
        cohort = extract_cohort(medication, cols, cfg.cohort)

        baseline = extract_baseline(
            load(cfg.sheet("baseline_target"),
                 self._required("subject", "evaluation_date", "longest_diameter")),
            load(cfg.sheet("baseline_nontarget"),
                 self._required("subject", "evaluation_date", "non_target_present")),
            cohort, cols, yes, date_format,
        )

        followup = extract_followup(
            load(cfg.sheet("followup_target"),
                 self._required("subject", "event_num", "evaluation_date", "longest_diameter")),
            load(cfg.sheet("followup_nontarget"),
                 self._required("subject", "event_num", "evaluation_date")),
            cols, date_format,
        )

        new_lesions = extract_new_lesions(
            load(cfg.sheet("new_lesions"), self._required("subject", "event_num", "evaluation_date")),
            cols, date_format,
        )

        responses = extract_responses(
            load(cfg.sheet("overall_response"), self._required("subject", "event_num", "overall_response")),
            cols,
        )

        return ExtractedInputs(
            cohort=cohort,
            baseline=baseline,
            followup=followup,
            new_lesions=new_lesions,
            responses=responses,
        )

    def derive(self, inputs: ExtractedInputs) -> ReviewResult:
        """Derive assessments and scan them for anomalies."""
        assessments = self.engine.run(inputs)
        anomalies = find_anomalies(assessments)
        return ReviewResult(assessments=assessments, anomalies=anomalies)

    def save(self, result: ReviewResult, output_dir: Optional[Union[str, Path]] = None) -> ReviewResult:
        """Write the workbook, summary and per-site figures.

        Args:
            result: ReviewResult from derive()
            output_dir: Overrides the configured output directory

        Returns:
            The same ReviewResult with output paths filled in
        """
        out_cfg = self.config.output
        output_dir = Path(output_dir or out_cfg.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        workbook_path = output_dir / out_cfg.workbook_name
        with pd.ExcelWriter(workbook_path, engine="openpyxl") as writer:
            result.assessments.to_excel(writer, sheet_name="assessments", index=False)
            result.anomalies.to_excel(writer, sheet_name="anomalies", index=False)
        result.workbook_path = str(workbook_path)
        logger.info(f"Saved: {workbook_path} ({len(result.assessments)} rows)")

        summary_path = output_dir / out_cfg.summary_name
        with open(summary_path, "w") as f:
            f.write(result.summary() + "\n")
        logger.info(f"Saved: {summary_path}")

        if out_cfg.render_figures:
            # Imported here so that derivation-only runs do not need a plotting backend
            from recist_review.visualization import render_site_reports

            result.figure_paths = render_site_reports(
                result.assessments,
                output_dir / out_cfg.figure_dir,
                thresholds=self.engine.thresholds,
                dpi=out_cfg.figure_dpi,
            )

        return result

    def run(self, output_dir: Optional[Union[str, Path]] = None, save: bool = True) -> ReviewResult:
        """Execute the full pipeline.

        Args:
            output_dir: Overrides the configured output directory
            save: Whether to write outputs

        Returns:
            ReviewResult with derived assessments and anomalies
        """
        with self.loader:
            inputs = self.load_inputs()
        result = self.derive(inputs)

        if save:
            result = self.save(result, output_dir)

        logger.info(
            f"Review complete: {result.num_subjects} subjects, "
            f"{len(result.assessments)} visits, {len(result.anomalies)} anomalies"
        )
        return result


def create_pipeline_from_dict(config_dict: dict, base_dir: Optional[Path] = None) -> ReviewPipeline:
    """Create pipeline from configuration dictionary.

    Args:
        config_dict: Nested dictionary in the YAML layout
        base_dir: Directory against which relative input paths are resolved

    Returns:
        Configured ReviewPipeline
    """
    return ReviewPipeline(ReviewConfig.from_dict(config_dict, base_dir=base_dir))
