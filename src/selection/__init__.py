"""Model-selection strategies for comorbidity predictors of readmission.

Each strategy runs per (family, cohort) and returns a SelectionResult:

- ``forward``: forward stepwise logistic regression by AIC (odds ratios,
  Wald 95% CIs, p-values)
- ``lasso``: 10-fold cross-validated L1 logistic regression with unpenalized
  age and sex (raw coefficients)
- ``random_forest``: forest importance with tuned ``max_features`` and RFE
  diagnostics (mean decrease in Gini)
"""

from src.selection.base import (
    ResultStore,
    SelectionResult,
    SelectionStrategy,
    StrategyContext,
    UnitKey,
    UnitOutcome,
)
from src.selection.stepwise import ForwardStepwiseStrategy
from src.selection.lasso import LassoStrategy
from src.selection.forest import RandomForestStrategy
from src.selection.registry import STRATEGY_REGISTRY, get_strategy

__all__ = [
    # Capability and result types
    "SelectionStrategy",
    "SelectionResult",
    "StrategyContext",
    "UnitKey",
    "UnitOutcome",
    "ResultStore",
    # Strategies
    "ForwardStepwiseStrategy",
    "LassoStrategy",
    "RandomForestStrategy",
    "STRATEGY_REGISTRY",
    "get_strategy",
]
