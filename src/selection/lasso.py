"""Cross-validated L1-penalized logistic regression with penalty factors.

Fixed covariates carry a penalty factor of 0 and are always retained; family
indicators carry a factor of 1 and are shrunk. The penalty strength is chosen
by stratified k-fold cross-validation on binomial deviance over a descending
log-spaced grid, fitting each fold's path with warm starts.

Penalty strengths are on the per-observation scale (the objective is mean
negative log-likelihood plus ``penalty * sum(factor * |beta|)``), with
predictors scaled to unit variance for fitting. Coefficients are reported on
the original scale.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy.special import expit
from sklearn.metrics import log_loss
from sklearn.model_selection import StratifiedKFold
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from src.cohorts.families import (
    FamilySpec,
    build_design_matrix,
    fixed_design_columns,
    has_both_classes,
)
from src.errors import DegenerateFoldError, FitDivergenceError
from src.selection.base import Predictor, SelectionStrategy, StrategyContext


logger = logging.getLogger(__name__)


def penalty_grid(n_penalties: int = 100, log_max: float = 10.0, log_min: float = -2.0) -> np.ndarray:
    """Descending log-spaced penalty strengths from 10**log_max to 10**log_min."""
    return np.logspace(log_max, log_min, n_penalties)


def check_fold_balance(y: np.ndarray, n_folds: int) -> None:
    """Raise DegenerateFoldError if some fold is bound to miss a class."""
    n_pos = int(np.sum(y == 1))
    n_neg = int(np.sum(y == 0))
    if min(n_pos, n_neg) < n_folds:
        raise DegenerateFoldError(
            f"{n_folds}-fold CV needs at least {n_folds} positives and negatives "
            f"(got {n_pos} positive, {n_neg} negative)"
        )


def _fit_l1(
    X: np.ndarray,
    y: np.ndarray,
    alpha: np.ndarray,
    start_params: np.ndarray,
    maxiter: int,
) -> np.ndarray | None:
    """One L1-penalized fit; None if the solver fails at this penalty."""
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = sm.Logit(y, X).fit_regularized(
                method="l1",
                alpha=alpha,
                start_params=start_params,
                maxiter=maxiter,
                trim_mode="auto",
                disp=False,
                qc_verbose=False,
            )
    except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
        logger.debug(f"  L1 fit failed: {e}")
        return None

    if not result.mle_retvals.get("converged", False):
        logger.debug(f"  L1 fit did not converge: {result.mle_retvals.get('warnflag')}")
        return None

    params = np.asarray(result.params, dtype=float)
    if not np.all(np.isfinite(params)):
        return None
    return params


def null_fit(
    X: np.ndarray,
    y: np.ndarray,
    penalty_factor: np.ndarray,
    maxiter: int = 1000,
) -> tuple[np.ndarray | None, float]:
    """Unpenalized fit on the factor-0 columns and the smallest penalty that keeps
    every penalized coefficient at zero.

    At any penalty >= the returned ``penalty_max`` the L1 solution is this fit
    with all penalized coefficients set to 0.

    Returns:
        Tuple of (full-length params or None if the fit fails, penalty_max)
    """
    free = penalty_factor == 0
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = sm.GLM(y, X[:, free], family=sm.families.Binomial()).fit(maxiter=maxiter)
    except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
        logger.debug(f"  unpenalized fit failed: {e}")
        return None, np.inf

    if not result.converged or not np.all(np.isfinite(result.params)):
        return None, np.inf

    params = np.zeros(X.shape[1])
    params[free] = np.asarray(result.params, dtype=float)
    if free.all():
        return params, 0.0

    # KKT: a penalized coefficient leaves zero once |score_j| / n exceeds penalty * factor_j
    score = X[:, ~free].T @ (y - expit(X @ params))
    penalty_max = float(np.max(np.abs(score) / (len(y) * penalty_factor[~free])))
    return params, penalty_max


def fit_path(
    X: np.ndarray,
    y: np.ndarray,
    penalties: np.ndarray,
    penalty_factor: np.ndarray,
    maxiter: int = 1000,
) -> list[np.ndarray | None]:
    """Fit the whole descending penalty path, warm-starting each fit.

    ``X`` must already include the intercept column (with factor 0). Penalties
    at or above the path's upper end reuse the unpenalized fixed-covariate fit
    instead of calling the solver.
    """
    n = len(y)
    base, penalty_max = null_fit(X, y, penalty_factor, maxiter)
    start = np.zeros(X.shape[1]) if base is None else base
    path = []
    for penalty in penalties:
        if penalty >= penalty_max:
            path.append(None if base is None else base.copy())
            continue
        params = _fit_l1(X, y, n * penalty * penalty_factor, start, maxiter)
        if params is not None:
            start = params
        path.append(params)
    return path


def cross_validate_penalty(
    X: np.ndarray,
    y: np.ndarray,
    penalties: np.ndarray,
    penalty_factor: np.ndarray,
    n_folds: int = 10,
    seed: int = 7,
    maxiter: int = 1000,
) -> pd.DataFrame:
    """Mean and standard error of held-out binomial deviance per penalty.

    Raises:
        DegenerateFoldError: If any held-out fold lacks a class
    """
    check_fold_balance(y, n_folds)
    folds = list(StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed).split(X, y))
    for i, (_, test_idx) in enumerate(folds):
        if not has_both_classes(y[test_idx]):
            raise DegenerateFoldError(f"Fold {i} has outcomes of only one class")

    deviance = np.full((n_folds, len(penalties)), np.inf)
    for i, (train_idx, test_idx) in enumerate(folds):
        path = fit_path(X[train_idx], y[train_idx], penalties, penalty_factor, maxiter)
        for j, params in enumerate(path):
            if params is None:
                continue
            proba = expit(X[test_idx] @ params)
            deviance[i, j] = 2 * log_loss(y[test_idx], proba, labels=[0, 1])

    with np.errstate(invalid="ignore"):
        se = deviance.std(axis=0, ddof=1) / np.sqrt(n_folds)
    return pd.DataFrame({
        "penalty": penalties,
        "deviance_mean": deviance.mean(axis=0),
        "deviance_se": se,
    })


class LassoStrategy(SelectionStrategy):
    """L1 logistic regression, penalty chosen by minimum CV deviance."""

    name = "lasso"
    metric = "coefficient"
    precision = 4

    def _fit(
        self,
        frame: pd.DataFrame,
        spec: FamilySpec,
        context: StrategyContext,
    ) -> tuple[pd.DataFrame, dict[str, Any], Predictor]:
        settings = context.settings
        X_df, y_s = build_design_matrix(frame, spec)
        fixed = fixed_design_columns(X_df, spec)
        y = y_s.to_numpy()

        check_fold_balance(y, settings.lasso_folds)

        # Constant columns cannot be scaled and stay at zero
        scale = X_df.std(ddof=0)
        fitted_cols = [c for c in X_df.columns if scale[c] > 0]
        X = np.column_stack([
            np.ones(len(X_df)),
            (X_df[fitted_cols] / scale[fitted_cols]).to_numpy(),
        ])
        penalty_factor = np.array([0.0] + [0.0 if c in fixed else 1.0 for c in fitted_cols])

        penalties = penalty_grid(
            settings.lasso_n_penalties,
            settings.lasso_log_penalty_max,
            settings.lasso_log_penalty_min,
        )
        cv_curve = cross_validate_penalty(
            X,
            y,
            penalties,
            penalty_factor,
            n_folds=settings.lasso_folds,
            seed=context.seed,
            maxiter=settings.lasso_maxiter,
        )
        if not np.isfinite(cv_curve["deviance_mean"]).any():
            raise FitDivergenceError("No penalty on the grid produced a usable fit")

        # argmin keeps the first minimum, i.e. the larger penalty on ties
        best = int(np.argmin(cv_curve["deviance_mean"].to_numpy()))
        path = fit_path(X, y, penalties[: best + 1], penalty_factor, settings.lasso_maxiter)
        params = path[-1]
        if params is None:
            raise FitDivergenceError(f"L1 fit failed at penalty {penalties[best]:.4g}")

        coef = pd.Series(0.0, index=X_df.columns)
        coef[fitted_cols] = params[1:] / scale[fitted_cols].to_numpy()
        intercept = params[0]
        logger.debug(
            f"  {spec.name}: penalty={penalties[best]:.4g}, "
            f"{int((coef[[c for c in X_df.columns if c not in fixed]] != 0).sum())} terms selected"
        )

        def predict(holdout: pd.DataFrame) -> np.ndarray:
            X_new, _ = build_design_matrix(holdout, spec, reference=frame)
            X_new = X_new.reindex(columns=coef.index, fill_value=0.0)
            return expit(intercept + X_new.to_numpy() @ coef.to_numpy())

        terms = pd.DataFrame({"term": coef.index, "estimate": coef.to_numpy()})
        _, penalty_max = null_fit(X, y, penalty_factor, settings.lasso_maxiter)
        diagnostics = {
            "penalty": float(penalties[best]),
            "penalty_max": penalty_max,
            "cv_curve": cv_curve,
            "intercept": float(intercept),
        }
        return terms, diagnostics, predict
