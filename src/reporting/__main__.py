"""CLI entry point for re-rendering random-forest tables from cached bundles.

Usage:
    python -m src.reporting [--family elix cd hcc] [--cache-dir PATH] [--output-dir PATH]
"""

import argparse
import logging
from pathlib import Path

from config.settings import Settings
from src.cohorts.data import load_term_labels
from src.errors import IOFailureError
from src.reporting.export import (
    export_strategy_family,
    forest_bundle_path,
    load_forest_bundle,
    results_from_forest_bundle,
)


logger = logging.getLogger(__name__)


def main():
    """Rebuild random-forest comparison tables without refitting."""
    settings = Settings()

    parser = argparse.ArgumentParser(
        description="Re-render random-forest importance tables from cached bundles",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--family",
        nargs="+",
        default=settings.families,
        help="Predictor families to render",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=settings.cache_dir,
        help="Directory holding random_forest_<family>.joblib bundles",
    )
    parser.add_argument(
        "--output-dir",
        "-o",
        type=Path,
        default=settings.output_dir,
        help="Output directory for tables",
    )
    parser.add_argument(
        "--labels",
        type=Path,
        default=settings.labels_path,
        help="Delimited file mapping indicator codes to labels",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    labels = load_term_labels(args.labels)
    rendered = 0

    for family in args.family:
        if not forest_bundle_path(args.cache_dir, family).exists():
            logger.warning(f"No cached bundle for family '{family}' in {args.cache_dir}")
            continue

        try:
            bundle = load_forest_bundle(family, args.cache_dir)
            results = results_from_forest_bundle(bundle, family)
            paths = export_strategy_family(results, "random_forest", family, args.output_dir, labels)
        except IOFailureError as e:
            logger.error(f"{family}: {e}")
            return 1

        logger.info(f"{family}: {len(results)} cohorts -> {paths['table']}")
        rendered += 1

    print(f"\nRendered {rendered} random-forest table(s) into {args.output_dir}")
    return 0


if __name__ == "__main__":
    exit(main())
