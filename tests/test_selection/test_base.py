"""Tests for src.selection.base and the strategy registry."""

import logging
import math

import numpy as np
import pandas as pd
import pytest

from src.cohorts.families import cohort_frames, select_family
from src.cohorts.partition import partition
from src.selection.base import (
    ResultStore,
    SelectionResult,
    StrategyContext,
    UnitKey,
    UnitOutcome,
    holdout_auroc,
)
from src.selection.forest import RandomForestStrategy
from src.selection.lasso import LassoStrategy
from src.selection.registry import STRATEGY_REGISTRY, get_strategy
from src.selection.stepwise import ForwardStepwiseStrategy


def make_result(strategy="lasso", family="elix", cohort="A", estimates=None):
    estimates = estimates or {"agyradm_s": 0.3, "elix_CHF": 1.2, "elix_HTN": 0.0}
    return SelectionResult(
        strategy=strategy,
        family=family,
        cohort=cohort,
        metric="coefficient",
        terms=pd.DataFrame({"term": list(estimates), "estimate": list(estimates.values())}),
        n_obs=75,
    )


class TestUnitKey:

    def test_str(self):
        assert str(UnitKey("lasso", "elix", "A")) == "lasso/elix/A"

    def test_ordering(self):
        keys = [UnitKey("lasso", "elix", "B"), UnitKey("forward", "cd", "A"), UnitKey("lasso", "elix", "A")]
        assert sorted(keys)[0] == UnitKey("forward", "cd", "A")
        assert sorted(keys)[-1] == UnitKey("lasso", "elix", "B")


class TestSelectionResult:

    def test_selected_terms_excludes_zero(self):
        assert make_result().selected_terms == ["agyradm_s", "elix_CHF"]

    def test_key(self):
        assert make_result(cohort="B").key == UnitKey("lasso", "elix", "B")


class TestResultStore:
    """One write-once slot per unit."""

    def test_put_and_get(self):
        store = ResultStore()
        outcome = UnitOutcome(UnitKey("lasso", "elix", "A"), result=make_result())
        store.put(outcome)

        assert UnitKey("lasso", "elix", "A") in store
        assert store.get(UnitKey("lasso", "elix", "A")) is outcome
        assert len(store) == 1

    def test_slot_written_twice(self):
        store = ResultStore()
        key = UnitKey("lasso", "elix", "A")
        store.put(UnitOutcome(key, result=make_result()))

        with pytest.raises(KeyError, match="already written"):
            store.put(UnitOutcome(key, error_type="FitDivergenceError", message="boom"))

    def test_results_and_failures(self):
        store = ResultStore()
        store.put(UnitOutcome(UnitKey("lasso", "elix", "B"), result=make_result(cohort="B")))
        store.put(UnitOutcome(UnitKey("lasso", "elix", "A"), result=make_result(cohort="A")))
        store.put(UnitOutcome(UnitKey("lasso", "cd", "A"), error_type="DegenerateFoldError", message="x"))

        assert list(store.results("lasso", "elix")) == ["A", "B"]
        assert store.results("lasso", "cd") == {}
        assert [o.key for o in store.failures()] == [UnitKey("lasso", "cd", "A")]

    def test_iteration_is_sorted(self):
        store = ResultStore()
        for cohort in ["C", "A", "B"]:
            store.put(UnitOutcome(UnitKey("forward", "elix", cohort), result=make_result(cohort=cohort)))

        assert [o.key.cohort for o in store] == ["A", "B", "C"]


class TestUnitOutcome:

    def test_ok_record(self):
        outcome = UnitOutcome(UnitKey("lasso", "elix", "A"), result=make_result())

        assert outcome.status == "ok"
        assert outcome.to_record() == {
            "strategy": "lasso",
            "family": "elix",
            "cohort": "A",
            "status": "ok",
            "error_type": None,
            "message": None,
        }

    def test_failed_record(self):
        outcome = UnitOutcome(UnitKey("forward", "hcc", "B"), error_type="NoMatchingColumnsError", message="none")

        assert outcome.status == "failed"
        assert outcome.to_record()["error_type"] == "NoMatchingColumnsError"


class TestRegistry:

    @pytest.mark.parametrize(
        "name,cls",
        [
            ("forward", ForwardStepwiseStrategy),
            ("lasso", LassoStrategy),
            ("random_forest", RandomForestStrategy),
        ],
    )
    def test_get_strategy(self, name, cls):
        strategy = get_strategy(name)

        assert isinstance(strategy, cls)
        assert strategy.name == name

    def test_unknown_strategy(self):
        with pytest.raises(KeyError, match="Available"):
            get_strategy("ridge")

    def test_only_forest_uses_full_data(self):
        assert [n for n, cls in STRATEGY_REGISTRY.items() if cls.uses_full_data] == ["random_forest"]


class TestHoldoutAuroc:

    def test_single_class_holdout_is_nan(self, standardized_patients):
        frame, spec = select_family(standardized_patients.assign(isreadmit30dc=0), "elix")

        assert math.isnan(holdout_auroc(lambda df: np.full(len(df), 0.5), frame, spec))

    def test_empty_holdout_is_nan(self, standardized_patients):
        frame, spec = select_family(standardized_patients, "elix")

        assert math.isnan(holdout_auroc(lambda df: np.zeros(len(df)), frame.iloc[0:0], spec))

    def test_perfect_predictor(self, standardized_patients):
        frame, spec = select_family(standardized_patients, "elix")

        auroc = holdout_auroc(lambda df: df["isreadmit30dc"].to_numpy(dtype=float), frame, spec)

        assert auroc == pytest.approx(1.0)


@pytest.fixture
def cohort_a_split(standardized_patients):
    """Cohort A train frame, test frame and spec for the Elixhauser family."""
    train_df, test_df = partition(standardized_patients, 0.75, seed=7)
    train, spec = select_family(train_df, "elix")
    test, _ = select_family(test_df, "elix")
    return cohort_frames(train)["A"], cohort_frames(test)["A"], spec


class TestPredictorEncoding:
    """Held-out rows are scored with the encoding the model was fitted on."""

    @pytest.mark.parametrize("strategy_cls", [ForwardStepwiseStrategy, LassoStrategy])
    def test_single_sex_holdout_matches_mixed_holdout(self, cohort_a_split, fast_settings, strategy_cls):
        train, test, spec = cohort_a_split
        _, _, predict = strategy_cls()._fit(train, spec, StrategyContext(fast_settings))

        males = test[test["sex"] == "M"]
        mixed = pd.concat([males, test[test["sex"] == "F"].head(1)])

        np.testing.assert_allclose(predict(males), predict(mixed)[: len(males)])


class TestRunLogging:

    def test_formula_logged_at_debug(self, cohort_a_split, fast_settings, caplog):
        train, _, spec = cohort_a_split

        with caplog.at_level(logging.DEBUG, logger="src.selection.base"):
            ForwardStepwiseStrategy().run(train, spec, "A", StrategyContext(fast_settings))

        assert spec.formula in caplog.text
        assert "isreadmit30dc ~ agyradm_s + sex + elix_CHF" in caplog.text
