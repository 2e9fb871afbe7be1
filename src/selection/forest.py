"""Random-forest importance with tuned ``max_features`` and RFE diagnostics.

This strategy runs on the full cohort (train and test together) because it
cross-validates internally:

1. ``max_features`` is tuned over ``1..p`` by stratified k-fold CV on
   Cohen's kappa.
2. Recursive feature elimination characterizes CV accuracy and kappa as a
   function of the number of top-ranked predictors (diagnostic only).
3. Importances (mean decrease in Gini impurity) come from a forest with the
   tuned ``max_features`` fit on all predictors.

CV folds are independent and are farmed out with joblib using the unit's
inner job budget.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import accuracy_score, cohen_kappa_score
from sklearn.model_selection import StratifiedKFold

from src.cohorts.families import FamilySpec, build_design_matrix
from src.errors import InsufficientPredictorsError
from src.selection.base import Predictor, SelectionStrategy, StrategyContext


logger = logging.getLogger(__name__)


def rfe_sizes(n_predictors: int) -> list[int]:
    """Subset sizes 1..5, then every 5th size from 10, always ending at p."""
    sizes = set(range(1, 6)) | set(range(10, n_predictors, 5)) | {n_predictors}
    return sorted(s for s in sizes if 1 <= s <= n_predictors)


def _forest(max_features: int, n_estimators: int, seed: int, n_jobs: int = 1) -> RandomForestClassifier:
    return RandomForestClassifier(
        n_estimators=n_estimators,
        max_features=max_features,
        random_state=seed,
        n_jobs=n_jobs,
    )


def _score_fold(
    X: np.ndarray,
    y: np.ndarray,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    max_features: int,
    n_estimators: int,
    seed: int,
) -> tuple[float, float]:
    """(accuracy, kappa) of one forest on one held-out fold."""
    model = _forest(max_features, n_estimators, seed).fit(X[train_idx], y[train_idx])
    pred = model.predict(X[test_idx])
    return accuracy_score(y[test_idx], pred), cohen_kappa_score(y[test_idx], pred)


def tune_max_features(
    X: np.ndarray,
    y: np.ndarray,
    n_folds: int = 5,
    n_estimators: int = 500,
    seed: int = 7,
    n_jobs: int = 1,
) -> tuple[int, pd.DataFrame]:
    """Pick ``max_features`` in ``1..p`` maximizing mean CV kappa.

    Returns:
        Tuple of (best max_features, curve with columns
        [max_features, accuracy, kappa])
    """
    folds = list(StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed).split(X, y))
    grid = list(range(1, X.shape[1] + 1))

    scores = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_score_fold)(X, y, train_idx, test_idx, m, n_estimators, seed)
        for m in grid
        for train_idx, test_idx in folds
    )

    scores = np.asarray(scores, dtype=float).reshape(len(grid), len(folds), 2)
    curve = pd.DataFrame({
        "max_features": grid,
        "accuracy": scores[:, :, 0].mean(axis=1),
        "kappa": np.nan_to_num(scores[:, :, 1], nan=0.0).mean(axis=1),
    })
    # argmax keeps the first maximum, i.e. the smaller max_features on ties
    best = int(curve["max_features"].iloc[int(np.argmax(curve["kappa"].to_numpy()))])
    return best, curve


def _rfe_fold(
    X: np.ndarray,
    y: np.ndarray,
    train_idx: np.ndarray,
    test_idx: np.ndarray,
    sizes: list[int],
    max_features: int,
    n_estimators: int,
    seed: int,
) -> list[dict[str, float]]:
    """Rank predictors on the fold's training part, then score each subset size."""
    ranker = _forest(min(max_features, X.shape[1]), n_estimators, seed).fit(X[train_idx], y[train_idx])
    ranking = np.argsort(-ranker.feature_importances_, kind="stable")

    rows = []
    for size in sizes:
        cols = ranking[:size]
        model = _forest(min(max_features, size), n_estimators, seed)
        model.fit(X[np.ix_(train_idx, cols)], y[train_idx])
        pred = model.predict(X[np.ix_(test_idx, cols)])
        rows.append({
            "size": size,
            "accuracy": accuracy_score(y[test_idx], pred),
            "kappa": cohen_kappa_score(y[test_idx], pred),
        })
    return rows


def recursive_feature_elimination(
    X: np.ndarray,
    y: np.ndarray,
    max_features: int,
    n_folds: int = 5,
    n_estimators: int = 500,
    seed: int = 7,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """CV accuracy and kappa (mean and sd) for nested top-k predictor subsets."""
    sizes = rfe_sizes(X.shape[1])
    folds = list(StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed).split(X, y))

    per_fold = Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(_rfe_fold)(X, y, train_idx, test_idx, sizes, max_features, n_estimators, seed)
        for train_idx, test_idx in folds
    )

    long = pd.DataFrame([row for rows in per_fold for row in rows])
    long["kappa"] = long["kappa"].fillna(0.0)
    curve = long.groupby("size").agg(
        accuracy=("accuracy", "mean"),
        kappa=("kappa", "mean"),
        accuracy_sd=("accuracy", "std"),
        kappa_sd=("kappa", "std"),
    )
    return curve.reset_index()


class RandomForestStrategy(SelectionStrategy):
    """Forest importance ranking of all predictors, no threshold applied."""

    name = "random_forest"
    metric = "importance"
    precision = 3
    uses_full_data = True

    def _fit(
        self,
        frame: pd.DataFrame,
        spec: FamilySpec,
        context: StrategyContext,
    ) -> tuple[pd.DataFrame, dict[str, Any], Predictor | None]:
        if not spec.family_terms:
            raise InsufficientPredictorsError(f"Family '{spec.name}' has no candidate predictors")

        settings = context.settings
        X_df, y_s = build_design_matrix(frame, spec)
        X, y = X_df.to_numpy(), y_s.to_numpy()

        max_features, tuning_curve = tune_max_features(
            X,
            y,
            n_folds=settings.rf_tune_folds,
            n_estimators=settings.rf_n_estimators,
            seed=context.seed,
            n_jobs=context.n_jobs,
        )
        logger.debug(f"  {spec.name}: tuned max_features={max_features}")

        rfe_curve = recursive_feature_elimination(
            X,
            y,
            max_features,
            n_folds=settings.rf_rfe_folds,
            n_estimators=settings.rf_n_estimators,
            seed=context.seed,
            n_jobs=context.n_jobs,
        )

        model = _forest(max_features, settings.rf_n_estimators, context.seed, n_jobs=context.n_jobs)
        model.fit(X, y)

        terms = pd.DataFrame({
            "term": X_df.columns,
            "estimate": model.feature_importances_,
        }).sort_values("estimate", ascending=False, kind="stable")

        diagnostics = {
            "model": model,
            "max_features": max_features,
            "tuning_curve": tuning_curve,
            "rfe_curve": rfe_curve,
            "optimal_size": int(rfe_curve.loc[rfe_curve["accuracy"].idxmax(), "size"]),
            "feature_names": list(X_df.columns),
        }
        return terms, diagnostics, None
