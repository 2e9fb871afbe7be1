"""Forward stepwise logistic regression with AIC as the selection criterion."""

from __future__ import annotations

import logging
import warnings
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import PerfectSeparationError

from src.cohorts.families import FamilySpec, build_design_matrix, informative_terms
from src.errors import FitDivergenceError
from src.selection.base import Predictor, SelectionStrategy, StrategyContext


logger = logging.getLogger(__name__)


def fit_logistic(X: pd.DataFrame, y: pd.Series, maxiter: int = 100):
    """Fit a binomial GLM with intercept.

    Returns:
        statsmodels GLMResults

    Raises:
        FitDivergenceError: If IRLS does not converge, the design is singular
            or the data are perfectly separated
    """
    design = sm.add_constant(X, has_constant="add")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = sm.GLM(y, design, family=sm.families.Binomial()).fit(maxiter=maxiter)
    except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
        raise FitDivergenceError(f"Logistic fit failed: {e}") from e

    if not result.converged or not np.all(np.isfinite(result.params)):
        raise FitDivergenceError(
            f"Logistic fit did not converge within {maxiter} iterations "
            f"({design.shape[1]} parameters, {len(y)} rows)"
        )
    return result


def forward_select(
    X: pd.DataFrame,
    y: pd.Series,
    fixed: list[str],
    candidates: list[str],
    max_steps: int = 20,
    maxiter: int = 100,
) -> tuple[list[str], Any, pd.DataFrame]:
    """Greedy forward search by AIC.

    Starts from ``fixed`` and, at each step, adds the candidate whose
    addition gives the lowest AIC. Candidates are tried in the given order and
    only a strictly lower AIC replaces the current best, so exact ties keep the
    first candidate. Stops when no candidate improves AIC or after
    ``max_steps`` additions. Candidate fits that fail are skipped.

    Returns:
        Tuple of (selected candidates in order added, final GLMResults,
        step path DataFrame with columns [step, term, aic])
    """
    selected: list[str] = []
    current = fit_logistic(X[fixed], y, maxiter=maxiter)
    path = [{"step": 0, "term": None, "aic": current.aic}]
    remaining = list(candidates)

    while remaining and len(selected) < max_steps:
        best_term, best_fit = None, None
        best_aic = current.aic

        for term in remaining:
            try:
                trial = fit_logistic(X[fixed + selected + [term]], y, maxiter=maxiter)
            except FitDivergenceError as e:
                logger.debug(f"  skipping candidate {term}: {e}")
                continue
            if trial.aic < best_aic:
                best_term, best_fit, best_aic = term, trial, trial.aic

        if best_term is None:
            break

        selected.append(best_term)
        remaining.remove(best_term)
        current = best_fit
        path.append({"step": len(selected), "term": best_term, "aic": best_aic})

    return selected, current, pd.DataFrame(path)


def odds_ratio_table(result, alpha: float = 0.05) -> pd.DataFrame:
    """Exponentiated coefficients with Wald confidence bounds and p-values."""
    ci = result.conf_int(alpha=alpha)
    table = pd.DataFrame({
        "term": result.params.index,
        "estimate": np.exp(result.params.values),
        "ci_lower": np.exp(ci.iloc[:, 0].values),
        "ci_upper": np.exp(ci.iloc[:, 1].values),
        "p_value": result.pvalues.values,
    })
    return table[table["term"] != "const"].reset_index(drop=True)


class ForwardStepwiseStrategy(SelectionStrategy):
    """Forward stepwise logistic regression between a covariates-only lower
    bound and a covariates-plus-family upper bound."""

    name = "forward"
    metric = "odds_ratio"
    precision = 4

    def _fit(
        self,
        frame: pd.DataFrame,
        spec: FamilySpec,
        context: StrategyContext,
    ) -> tuple[pd.DataFrame, dict[str, Any], Predictor]:
        settings = context.settings
        candidates = informative_terms(frame, spec)
        X, y = build_design_matrix(frame, spec, terms=candidates)
        fixed = [c for c in X.columns if c not in candidates]

        # Both scope bounds must be estimable before searching between them
        fit_logistic(X[fixed], y, maxiter=settings.stepwise_maxiter)
        fit_logistic(X, y, maxiter=settings.stepwise_maxiter)

        selected, final, path = forward_select(
            X,
            y,
            fixed=fixed,
            candidates=candidates,
            max_steps=settings.stepwise_max_steps,
            maxiter=settings.stepwise_maxiter,
        )
        logger.debug(f"  {spec.name}: selected {len(selected)}/{len(candidates)} terms")

        columns = fixed + selected

        def predict(holdout: pd.DataFrame) -> np.ndarray:
            X_new, _ = build_design_matrix(holdout, spec, terms=selected, reference=frame)
            X_new = X_new.reindex(columns=columns, fill_value=0.0)
            design = sm.add_constant(X_new, has_constant="add")[final.params.index]
            return np.asarray(final.predict(design))

        diagnostics = {
            "step_path": path,
            "aic": float(final.aic),
            "n_candidates": len(candidates),
            "hit_step_limit": len(selected) >= settings.stepwise_max_steps,
        }
        return odds_ratio_table(final), diagnostics, predict
