"""Main pipeline orchestrator for comorbidity-index variable selection.

Orchestrates all 4 stages of the pipeline:
1. Load: Read the patient table and standardize age once, globally
2. Partition: Cohort-stratified train/test split (fatal on failure)
3. Select: Run every (strategy, family, cohort) unit on a worker pool
4. Export: Comparison tables, manifest, model summary and forest bundles
"""

import argparse
import logging
import os
from dataclasses import dataclass, replace
from multiprocessing import Pool
from pathlib import Path
from typing import Any

import pandas as pd

from config.settings import Settings
from src.cohorts.data import add_standardized_age, load_patients, load_term_labels
from src.cohorts.families import FamilySpec, cohort_frames, resolve_prefix, select_family
from src.cohorts.partition import partition
from src.errors import NoMatchingColumnsError, SelectionError
from src.reporting.export import export_run
from src.reporting.normalize import normalize
from src.selection.base import ResultStore, StrategyContext, UnitKey, UnitOutcome
from src.selection.registry import get_strategy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionUnit:
    """Everything one worker needs to run one (strategy, family, cohort)."""

    key: UnitKey
    frame: pd.DataFrame
    spec: FamilySpec
    settings: Settings
    holdout: pd.DataFrame | None = None
    n_jobs: int = 1


def run_unit(unit: SelectionUnit) -> UnitOutcome:
    """Run one unit; failures are returned as outcomes, never raised."""
    strategy = get_strategy(unit.key.strategy)
    context = StrategyContext(settings=unit.settings, n_jobs=unit.n_jobs)

    try:
        result = strategy.run(
            unit.frame,
            unit.spec,
            unit.key.cohort,
            context,
            holdout=unit.holdout,
        )
    except SelectionError as e:
        logger.warning(f"  {unit.key} failed: {type(e).__name__}: {e}")
        return UnitOutcome(unit.key, error_type=type(e).__name__, message=str(e))
    except Exception as e:
        logger.exception(f"  {unit.key} failed unexpectedly")
        return UnitOutcome(unit.key, error_type=type(e).__name__, message=str(e))

    return UnitOutcome(unit.key, result=result)


def worker_budget(n_workers: int, n_units: int) -> tuple[int, int]:
    """Split the core budget into (outer pool size, inner jobs per unit).

    outer * inner never exceeds the number of cores.
    """
    cores = n_workers or os.cpu_count() or 1
    outer = max(1, min(cores, n_units))
    inner = max(1, cores // outer)
    return outer, inner


def build_units(
    patients: pd.DataFrame,
    train_df: pd.DataFrame,
    test_df: pd.DataFrame,
    settings: Settings,
    store: ResultStore,
) -> list[SelectionUnit]:
    """Expand strategies x families x cohorts into units.

    Families without matching columns are recorded as failed for every
    (strategy, cohort) and produce no units.
    """
    cohorts = [str(c) for c in sorted(patients[settings.cohort_col].dropna().unique())]
    fixed_covariates = (f"{settings.age_col}_s", settings.sex_col)
    units = []

    for family in settings.families:
        try:
            full_frame, spec = select_family(
                patients,
                family,
                outcome=settings.outcome_col,
                fixed_covariates=fixed_covariates,
                cohort_col=settings.cohort_col,
            )
        except NoMatchingColumnsError as e:
            logger.warning(f"  Family '{family}' skipped: {e}")
            for strategy in settings.strategies:
                for cohort in cohorts:
                    store.put(UnitOutcome(
                        UnitKey(strategy, resolve_prefix(family).rstrip("_"), cohort),
                        error_type=type(e).__name__,
                        message=str(e),
                    ))
            continue

        frames = {
            "full": cohort_frames(full_frame, settings.cohort_col),
            "train": cohort_frames(train_df[spec.columns], settings.cohort_col),
            "test": cohort_frames(test_df[spec.columns], settings.cohort_col),
        }
        frames = {name: {str(k): v for k, v in by_cohort.items()} for name, by_cohort in frames.items()}
        empty = full_frame.iloc[0:0]

        for strategy_name in settings.strategies:
            strategy = get_strategy(strategy_name)
            for cohort in cohorts:
                if strategy.uses_full_data:
                    frame, holdout = frames["full"].get(cohort, empty), None
                else:
                    frame = frames["train"].get(cohort, empty)
                    holdout = frames["test"].get(cohort, empty)
                units.append(SelectionUnit(
                    key=UnitKey(strategy_name, spec.name, cohort),
                    frame=frame,
                    spec=spec,
                    settings=settings,
                    holdout=holdout,
                ))

    return units


def run_units(units: list[SelectionUnit], store: ResultStore, n_workers: int = 0) -> ResultStore:
    """Dispatch units to a process pool and write each outcome to its slot."""
    if not units:
        return store

    outer, inner = worker_budget(n_workers, len(units))
    units = [replace(u, n_jobs=inner) for u in units]
    logger.info(f"  {len(units)} units on {outer} worker(s), {inner} inner job(s) each")

    if outer == 1:
        outcomes = map(run_unit, units)
        for idx, outcome in enumerate(outcomes, 1):
            store.put(outcome)
            logger.info(f"Unit {idx}/{len(units)} {outcome.key}: {outcome.status}")
        return store

    with Pool(outer) as pool:
        for idx, outcome in enumerate(pool.imap_unordered(run_unit, units), 1):
            store.put(outcome)
            logger.info(f"Unit {idx}/{len(units)} {outcome.key}: {outcome.status}")

    return store


def run_pipeline(
    settings: Settings,
    patients: pd.DataFrame | None = None,
) -> dict[str, Any]:
    """Run the complete cross-cohort, cross-family selection pipeline.

    Args:
        settings: Run configuration (seed, folds, penalty grid, step limits...)
        patients: Patient table; read from ``settings.patients_path`` if None

    Returns:
        Dictionary containing:
            - n_patients: Number of admissions
            - partition: {cohort: {"train": n, "test": n}}
            - store: ResultStore with one outcome per unit
            - tables: {(strategy, family): wide comparison table}
            - artifact_paths: Paths to exported files

    Raises:
        InvalidFractionError, EmptyInputError, IOFailureError: Global
            precondition failures; no unit can run without a valid partition
    """
    # Stage 1: Load
    logger.info("Stage 1: Loading patient table...")
    if patients is None:
        patients = load_patients(
            settings.patients_path,
            required_columns=(settings.cohort_col, settings.outcome_col, settings.age_col, settings.sex_col),
        )
    patients = add_standardized_age(patients, age_col=settings.age_col)

    # Stage 2: Partition
    logger.info("Stage 2: Partitioning by cohort...")
    train_df, test_df = partition(
        patients,
        train_fraction=settings.train_fraction,
        seed=settings.random_seed,
        cohort_col=settings.cohort_col,
    )
    sizes = {
        str(c): {
            "train": int((train_df[settings.cohort_col] == c).sum()),
            "test": int((test_df[settings.cohort_col] == c).sum()),
        }
        for c in sorted(patients[settings.cohort_col].dropna().unique())
    }
    logger.info(f"  Train: {len(train_df)}, Test: {len(test_df)}, Cohorts: {len(sizes)}")

    # Stage 3: Selection
    logger.info("Stage 3: Running selection strategies...")
    store = ResultStore()
    units = build_units(patients, train_df, test_df, settings, store)
    run_units(units, store, n_workers=settings.n_workers)

    failures = store.failures()
    if failures:
        logger.warning(f"  {len(failures)}/{len(store)} units failed (see manifest)")

    # Stage 4: Export
    logger.info("Stage 4: Exporting tables...")
    labels = load_term_labels(settings.labels_path)
    paths = export_run(
        store,
        output_dir=settings.output_dir,
        labels=labels,
        cache_dir=settings.cache_dir,
        extra={"random_seed": settings.random_seed, "train_fraction": settings.train_fraction},
    )

    tables = {}
    for strategy in settings.strategies:
        for family in sorted({o.key.family for o in store}):
            results = store.results(strategy, family)
            if results:
                tables[(strategy, family)] = normalize(results, strategy, family)

    return {
        "n_patients": len(patients),
        "partition": sizes,
        "store": store,
        "tables": tables,
        "artifact_paths": paths,
    }


def main():
    """CLI entry point for the pipeline."""
    parser = argparse.ArgumentParser(
        description="Compare comorbidity-index variable selection strategies for readmission",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--patients",
        type=Path,
        default=None,
        help="Path to the patient-level table (parquet, feather or CSV)",
    )
    parser.add_argument(
        "--strategy",
        nargs="+",
        default=None,
        choices=["forward", "lasso", "random_forest"],
        help="Selection strategies to run (default: all)",
    )
    parser.add_argument(
        "--family",
        nargs="+",
        default=None,
        help="Predictor families to run, e.g. elix cd hcc (default: all)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes (0 = all cores)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for partitioning and cross-validation",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory for tables and manifest",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory for cached random-forest bundles",
    )
    parser.add_argument(
        "--verbose",
        "-v",
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

    # Load settings
    settings = Settings()

    # Override settings from CLI args
    updates = {}
    if args.patients is not None:
        updates["patients_path"] = args.patients
    if args.strategy:
        updates["strategies"] = args.strategy
    if args.family:
        updates["families"] = args.family
    if args.workers is not None:
        updates["n_workers"] = args.workers
    if args.seed is not None:
        updates["random_seed"] = args.seed
    if args.output_dir is not None:
        updates["output_dir"] = args.output_dir
    if args.cache_dir is not None:
        updates["cache_dir"] = args.cache_dir

    if updates:
        settings = settings.model_copy(update=updates)

    if not settings.patients_path.exists():
        logger.error(f"Patient table not found: {settings.patients_path}")
        return 1

    logger.info("Starting comorbidity selection pipeline...")
    try:
        result = run_pipeline(settings)
    except SelectionError as e:
        logger.error(f"Pipeline failed: {type(e).__name__}: {e}")
        return 1

    store = result["store"]

    # Print summary
    print("\n" + "=" * 60)
    print("Pipeline Complete")
    print("=" * 60)
    print(f"Admissions: {result['n_patients']}")
    for cohort, n in result["partition"].items():
        print(f"  {cohort}: train={n['train']}, test={n['test']}")
    print(f"\nUnits: {len(store)} ({len(store.failures())} failed)")
    for outcome in store.failures():
        print(f"  {outcome.key}: {outcome.error_type}: {outcome.message}")

    print("\nArtifacts:")
    for name, path in result["artifact_paths"].items():
        print(f"  {name}: {path}")

    return 0


if __name__ == "__main__":
    exit(main())
