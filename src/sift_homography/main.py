"""
Command-line driver: match the two configured images and write the annotated result.

Usage:
    sift-homography            # device 0
    sift-homography 1          # device 1
    CONFIG_PATH=other.yaml sift-homography
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console

from sift_homography.config import ConfigurationError, get_settings
from sift_homography.core.exceptions import PipelineError
from sift_homography.logging import get_logger, setup_logging
from sift_homography.pipeline import MatchPipeline

console = Console()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Match two images, refine their homography and annotate the first"
    )
    parser.add_argument(
        "device",
        type=int,
        nargs="?",
        default=0,
        help="Compute device index",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the pipeline; returns the process exit status."""
    args = parse_args(argv)

    try:
        settings = get_settings()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}", markup=True)
        return 1

    setup_logging(settings.logging.level)
    logger = get_logger("main")
    logger.info("Initializing", extra={"device": args.device, "version": settings.service.version})

    try:
        result = MatchPipeline(settings).run_files()
    except PipelineError as e:
        logger.error(
            "Pipeline failed",
            extra={"error_code": e.error, "error_message": e.message, "details": e.details},
        )
        return 1

    console.print(result.outcome.summary.format(), markup=False, highlight=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
