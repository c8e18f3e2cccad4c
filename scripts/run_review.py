"""Run the RECIST review over the configured CRF exports.

Reads the medication-intake, screening and tumor-assessment workbooks,
derives per-visit assessments and writes the review workbook, a summary and
one chart per site.
"""

import argparse
import logging
import sys
from pathlib import Path

from recist_review.pipeline import ReviewPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).parent.parent / "configs" / "default.yaml"


def main():
    """Run the full review pipeline."""
    parser = argparse.ArgumentParser(description="RECIST v1.1 tumor response review")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG),
                        help="Path to YAML configuration")
    parser.add_argument("--output-dir", type=str, default=None,
                        help="Override the configured output directory")
    args = parser.parse_args()

    try:
        pipeline = ReviewPipeline.from_yaml(args.config)
        result = pipeline.run(output_dir=args.output_dir)
    except (FileNotFoundError, KeyError, ValueError) as e:
        logger.error(f"Review aborted: {e}")
        return 1

    print(result.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
