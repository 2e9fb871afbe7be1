"""Flat-file exports of comparison tables, run manifest and cached forest bundles.

Regression tables (forward, lasso) are rounded to 4 decimals and importance
tables (random_forest) to 3 decimals.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import joblib
import numpy as np
import pandas as pd

from src.errors import IOFailureError
from src.reporting.normalize import never_selected_terms, normalize, to_long
from src.selection.base import ResultStore, SelectionResult, UnitOutcome


logger = logging.getLogger(__name__)


TABLE_PRECISION = {
    "forward": 4,
    "lasso": 4,
    "random_forest": 3,
}


def write_comparison_table(table: pd.DataFrame, path: Path, precision: int) -> Path:
    """Write a wide table as CSV with values rounded to ``precision`` decimals."""
    path = Path(path)
    cohort_cols = [c for c in table.columns if c != "term"]
    rounded = table.copy()
    if cohort_cols:
        rounded[cohort_cols] = rounded[cohort_cols].astype(float).round(precision)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        rounded.to_csv(path, index=False)
    except OSError as e:
        raise IOFailureError(f"Could not write {path}: {e}") from e
    return path


def read_comparison_table(path: Path) -> pd.DataFrame:
    """Read a wide table written by :func:`write_comparison_table`."""
    try:
        table = pd.read_csv(path, dtype={"term": str})
    except OSError as e:
        raise IOFailureError(f"Could not read {path}: {e}") from e
    table.columns = [str(c) for c in table.columns]
    return table


def _write_csv(df: pd.DataFrame, path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(path, index=False)
    except OSError as e:
        raise IOFailureError(f"Could not write {path}: {e}") from e
    return path


def render_markdown_table(
    table: pd.DataFrame,
    title: str,
    precision: int,
    labels: dict[str, str] | None = None,
) -> str:
    """Markdown display table; terms are shown with their human-readable label."""
    labels = labels or {}
    cohort_cols = [c for c in table.columns if c != "term"]

    header = "| Term | " + " | ".join(cohort_cols) + " |"
    divider = "|---|" + "---|" * len(cohort_cols)
    rows = []
    for _, row in table.iterrows():
        label = labels.get(row["term"], row["term"])
        cells = [
            "" if pd.isna(row[c]) else f"{row[c]:.{precision}f}"
            for c in cohort_cols
        ]
        rows.append(f"| {label} | " + " | ".join(cells) + " |")

    return f"""# {title}

{header}
{divider}
""" + "\n".join(rows) + "\n"


def write_markdown_table(
    table: pd.DataFrame,
    path: Path,
    title: str,
    precision: int,
    labels: dict[str, str] | None = None,
) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_markdown_table(table, title, precision, labels))
    except OSError as e:
        raise IOFailureError(f"Could not write {path}: {e}") from e
    return path


def write_manifest(outcomes: Iterable[UnitOutcome], path: Path, extra: dict[str, Any] | None = None) -> Path:
    """JSON manifest of every unit's status, with the failure reason if any."""
    outcomes = list(outcomes)
    manifest = {
        **(extra or {}),
        "n_units": len(outcomes),
        "n_failed": sum(o.status == "failed" for o in outcomes),
        "units": [o.to_record() for o in outcomes],
    }
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(manifest, indent=2, default=str))
    except OSError as e:
        raise IOFailureError(f"Could not write {path}: {e}") from e
    return path


def model_summary(outcomes: Iterable[UnitOutcome]) -> pd.DataFrame:
    """One row per successful unit: sample sizes, selected terms, held-out AUROC."""
    rows = []
    for o in outcomes:
        if o.result is None:
            continue
        r = o.result
        rows.append({
            "strategy": r.strategy,
            "family": r.family,
            "cohort": r.cohort,
            "n_obs": r.n_obs,
            "n_holdout": r.diagnostics.get("n_holdout", np.nan),
            "n_terms": sum(str(t).startswith(f"{r.family}_") for t in r.selected_terms),
            "holdout_auroc": r.diagnostics.get("holdout_auroc", np.nan),
        })
    return pd.DataFrame(
        rows,
        columns=["strategy", "family", "cohort", "n_obs", "n_holdout", "n_terms", "holdout_auroc"],
    )


def forest_bundle_path(cache_dir: Path, family: str) -> Path:
    return Path(cache_dir) / f"random_forest_{family}.joblib"


def save_forest_bundle(results: dict[str, SelectionResult], family: str, cache_dir: Path) -> Path:
    """Cache tuned forests, tuning/RFE curves and importances for one family."""
    bundle = {
        cohort: {
            "model": r.diagnostics.get("model"),
            "max_features": r.diagnostics.get("max_features"),
            "tuning_curve": r.diagnostics.get("tuning_curve"),
            "rfe_curve": r.diagnostics.get("rfe_curve"),
            "importances": r.terms,
            "n_obs": r.n_obs,
        }
        for cohort, r in results.items()
    }
    path = forest_bundle_path(cache_dir, family)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(bundle, path)
    except OSError as e:
        raise IOFailureError(f"Could not write {path}: {e}") from e
    return path


def load_forest_bundle(family: str, cache_dir: Path) -> dict[str, dict[str, Any]]:
    path = forest_bundle_path(cache_dir, family)
    try:
        return joblib.load(path)
    except OSError as e:
        raise IOFailureError(f"Could not read {path}: {e}") from e


def results_from_forest_bundle(bundle: dict[str, dict[str, Any]], family: str) -> dict[str, SelectionResult]:
    """Rebuild SelectionResults from a cached bundle so reports can be redone without refitting."""
    return {
        cohort: SelectionResult(
            strategy="random_forest",
            family=family,
            cohort=cohort,
            metric="importance",
            terms=entry["importances"],
            n_obs=entry["n_obs"],
            diagnostics={k: v for k, v in entry.items() if k not in ("importances", "n_obs")},
        )
        for cohort, entry in bundle.items()
    }


def export_strategy_family(
    results: dict[str, SelectionResult],
    strategy: str,
    family: str,
    output_dir: Path,
    labels: dict[str, str] | None = None,
) -> dict[str, Path]:
    """Write every artifact for one (strategy, family) and return their paths."""
    output_dir = Path(output_dir)
    precision = TABLE_PRECISION.get(strategy, 4)
    stem = f"{strategy}_{family}"
    paths = {}

    table = normalize(results, strategy, family)
    paths["table"] = write_comparison_table(table, output_dir / f"{stem}.csv", precision)

    long = pd.concat([to_long(r) for r in results.values()], ignore_index=True)
    paths["long"] = _write_csv(long, output_dir / f"{stem}_long.csv")

    paths["markdown"] = write_markdown_table(
        table,
        output_dir / f"{stem}.md",
        title=f"{strategy} / {family}",
        precision=precision,
        labels=labels,
    )

    if strategy == "lasso":
        never = pd.DataFrame({"term": never_selected_terms(table)})
        paths["never_selected"] = _write_csv(never, output_dir / f"{stem}_never_selected.csv")
        logger.info(f"  {stem}: {len(never)} terms never selected in any cohort")

    return paths


def export_run(
    store: ResultStore,
    output_dir: Path,
    labels: dict[str, str] | None = None,
    cache_dir: Path | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Path]:
    """Export tables for every (strategy, family) with results, plus manifest and summary."""
    output_dir = Path(output_dir)
    paths: dict[str, Path] = {}

    pairs = sorted({(o.key.strategy, o.key.family) for o in store})
    for strategy, family in pairs:
        results = store.results(strategy, family)
        if not results:
            logger.warning(f"  {strategy}/{family}: no successful cohorts, nothing to export")
            continue
        for name, path in export_strategy_family(results, strategy, family, output_dir, labels).items():
            paths[f"{strategy}_{family}_{name}"] = path
        if strategy == "random_forest" and cache_dir is not None:
            paths[f"{strategy}_{family}_bundle"] = save_forest_bundle(results, family, cache_dir)

    paths["summary"] = _write_csv(model_summary(store), output_dir / "model_summary.csv")
    paths["manifest"] = write_manifest(store, output_dir / "manifest.json", extra)
    return paths

