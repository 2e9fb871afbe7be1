"""Selection-strategy capability shared by all three strategies.

A strategy is invoked once per (family, cohort) unit with that cohort's
modeling frame and returns an immutable :class:`SelectionResult`. The
orchestrator treats every strategy the same way; only the fitting step
differs.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import numpy as np
import pandas as pd
from sklearn.metrics import roc_auc_score

from config.settings import Settings
from src.cohorts.families import FamilySpec, build_design_matrix, has_both_classes
from src.errors import EmptyInputError


logger = logging.getLogger(__name__)


TERM_COLUMNS = ["term", "estimate", "ci_lower", "ci_upper", "p_value"]


@dataclass(frozen=True, order=True)
class UnitKey:
    """Identifies one independent unit of work."""

    strategy: str
    family: str
    cohort: str

    def __str__(self) -> str:
        return f"{self.strategy}/{self.family}/{self.cohort}"


@dataclass(frozen=True)
class StrategyContext:
    """Per-invocation configuration handed to a strategy.

    ``n_jobs`` is the inner parallelism budget left for this unit once the
    orchestrator has spread units over its worker pool.
    """

    settings: Settings
    n_jobs: int = 1

    @property
    def seed(self) -> int:
        return self.settings.random_seed


@dataclass(frozen=True)
class SelectionResult:
    """Output of one strategy for one (family, cohort) unit."""

    strategy: str
    family: str
    cohort: str
    metric: str
    terms: pd.DataFrame
    n_obs: int
    diagnostics: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def key(self) -> UnitKey:
        return UnitKey(self.strategy, self.family, self.cohort)

    @property
    def selected_terms(self) -> list[str]:
        """Terms with a non-zero estimate."""
        estimates = self.terms["estimate"]
        return self.terms.loc[estimates.notna() & (estimates != 0), "term"].tolist()


@dataclass(frozen=True)
class UnitOutcome:
    """Slot content for one unit: a result, or the reason it failed."""

    key: UnitKey
    result: SelectionResult | None = None
    error_type: str | None = None
    message: str | None = None

    @property
    def status(self) -> str:
        return "ok" if self.result is not None else "failed"

    def to_record(self) -> dict[str, Any]:
        return {
            "strategy": self.key.strategy,
            "family": self.key.family,
            "cohort": self.key.cohort,
            "status": self.status,
            "error_type": self.error_type,
            "message": self.message,
        }


class ResultStore:
    """Collection point with one write-once slot per unit."""

    def __init__(self) -> None:
        self._slots: dict[UnitKey, UnitOutcome] = {}
        self._lock = threading.Lock()

    def put(self, outcome: UnitOutcome) -> None:
        with self._lock:
            if outcome.key in self._slots:
                raise KeyError(f"Result slot {outcome.key} already written")
            self._slots[outcome.key] = outcome

    def get(self, key: UnitKey) -> UnitOutcome:
        return self._slots[key]

    def __contains__(self, key: UnitKey) -> bool:
        return key in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[UnitOutcome]:
        return iter([self._slots[k] for k in sorted(self._slots)])

    def results(self, strategy: str, family: str) -> dict[str, SelectionResult]:
        """Successful results for one (strategy, family), keyed by cohort."""
        return {
            o.key.cohort: o.result
            for o in self
            if o.key.strategy == strategy and o.key.family == family and o.result is not None
        }

    def failures(self) -> list[UnitOutcome]:
        return [o for o in self if o.result is None]


Predictor = Callable[[pd.DataFrame], np.ndarray]


class SelectionStrategy(ABC):
    """Base class for ForwardStepwise, Lasso and RandomForest selection."""

    name: str = ""
    metric: str = ""
    precision: int = 4
    uses_full_data: bool = False

    def run(
        self,
        frame: pd.DataFrame,
        spec: FamilySpec,
        cohort: str,
        context: StrategyContext,
        holdout: pd.DataFrame | None = None,
    ) -> SelectionResult:
        """Fit the strategy on one cohort's frame and package the result.

        Args:
            frame: Modeling frame for a single cohort
            spec: Family description from ``select_family``
            cohort: Cohort identifier
            context: Settings and inner job budget
            holdout: Optional test rows of the same cohort, used only to
                report held-out AUROC

        Returns:
            SelectionResult with ``terms`` in the common column layout
        """
        if len(frame) == 0:
            raise EmptyInputError(f"No rows for cohort {cohort} in family {spec.name}")

        logger.debug(f"{self.name}/{spec.name}/{cohort}: fitting {spec.formula} on {len(frame)} rows")
        terms, diagnostics, predictor = self._fit(frame, spec, context)

        terms = terms.reindex(columns=TERM_COLUMNS).reset_index(drop=True)
        diagnostics = dict(diagnostics)
        if predictor is not None and holdout is not None:
            diagnostics["holdout_auroc"] = holdout_auroc(predictor, holdout, spec)
            diagnostics["n_holdout"] = len(holdout)

        return SelectionResult(
            strategy=self.name,
            family=spec.name,
            cohort=cohort,
            metric=self.metric,
            terms=terms,
            n_obs=len(frame),
            diagnostics=diagnostics,
        )

    @abstractmethod
    def _fit(
        self,
        frame: pd.DataFrame,
        spec: FamilySpec,
        context: StrategyContext,
    ) -> tuple[pd.DataFrame, dict[str, Any], Predictor | None]:
        """Return (terms, diagnostics, predictor) for one cohort frame."""


def holdout_auroc(predictor: Predictor, holdout: pd.DataFrame, spec: FamilySpec) -> float:
    """AUROC of ``predictor`` on held-out rows (NaN if only one class is present)."""
    if len(holdout) == 0:
        return float("nan")
    _, y = build_design_matrix(holdout, spec)
    if not has_both_classes(y):
        return float("nan")
    return float(roc_auc_score(y, predictor(holdout)))
