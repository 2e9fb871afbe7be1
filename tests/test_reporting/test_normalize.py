"""Tests for src.reporting.normalize: long records and wide comparison tables."""

import numpy as np
import pandas as pd
import pytest

from src.reporting.normalize import (
    clean_term_label,
    never_selected_terms,
    normalize,
    to_long,
    wide_to_triples,
)
from src.selection.base import SelectionResult


def stepwise_result(cohort, rows):
    """rows: term -> (odds ratio, lower, upper, p)."""
    return SelectionResult(
        strategy="forward",
        family="elix",
        cohort=cohort,
        metric="odds_ratio",
        terms=pd.DataFrame(
            [(t, *v) for t, v in rows.items()],
            columns=["term", "estimate", "ci_lower", "ci_upper", "p_value"],
        ),
        n_obs=50,
    )


def lasso_result(cohort, coefs):
    return SelectionResult(
        strategy="lasso",
        family="elix",
        cohort=cohort,
        metric="coefficient",
        terms=pd.DataFrame({
            "term": list(coefs),
            "estimate": list(coefs.values()),
            "ci_lower": np.nan,
            "ci_upper": np.nan,
            "p_value": np.nan,
        }),
        n_obs=50,
    )


@pytest.mark.parametrize(
    "term,prefix,expected",
    [
        ("elix_CHFTRUE", "elix_", "CHF"),
        ("elix_CHF[T.True]", "elix_", "CHF"),
        ("elix_CHF[T.1]", "elix_", "CHF"),
        ("cd_MI", "cd_", "MI"),
        ("hcc_85True", "hcc_", "85"),
        ("agyradm_s", "elix_", "agyradm_s"),
        ("elix_RENAL", None, "elix_RENAL"),
    ],
)
def test_clean_term_label(term, prefix, expected):
    assert clean_term_label(term, prefix) == expected


class TestToLong:

    def test_stepwise_emits_all_metrics(self):
        result = stepwise_result("A", {"elix_CHF": (3.0, 1.5, 6.0, 0.01)})
        long = to_long(result)

        assert list(long.columns) == ["cohort", "term", "metric", "value"]
        assert list(long["metric"]) == ["odds_ratio", "ci_lower", "ci_upper", "p_value"]
        assert list(long["value"]) == [3.0, 1.5, 6.0, 0.01]

    def test_lasso_emits_only_coefficient(self):
        long = to_long(lasso_result("A", {"agyradm_s": 0.2, "elix_CHF": 0.0}))

        assert set(long["metric"]) == {"coefficient"}
        assert len(long) == 2


class TestNormalize:
    """Wide tables: family terms only, sorted rows and cohort columns."""

    def test_two_cohort_table(self):
        results = {
            "B": stepwise_result("B", {"agyradm_s": (1.3, 1.0, 1.6, 0.04), "elix_RENAL": (2.0, 1.1, 3.5, 0.02)}),
            "A": stepwise_result("A", {"elix_CHF": (3.0, 1.5, 6.0, 0.01), "elix_RENAL": (1.8, 1.0, 3.0, 0.05)}),
        }
        table = normalize(results, "forward", "elix")

        assert list(table.columns) == ["term", "A", "B"]
        assert list(table["term"]) == ["CHF", "RENAL"]
        assert table.loc[table["term"] == "CHF", "A"].item() == 3.0
        assert np.isnan(table.loc[table["term"] == "CHF", "B"].item())
        assert table.loc[table["term"] == "RENAL", "B"].item() == 2.0

    def test_fixed_covariates_dropped(self):
        table = normalize([lasso_result("A", {"agyradm_s": 0.2, "sex_M": -0.1, "elix_DM": 0.4})], "lasso", "elix")

        assert list(table["term"]) == ["DM"]

    def test_zero_coefficients_kept(self):
        table = normalize([lasso_result("A", {"elix_DM": 0.0, "elix_CHF": 0.7})], "lasso", "elix")

        assert table.loc[table["term"] == "DM", "A"].item() == 0.0

    def test_empty_input(self):
        table = normalize({}, "lasso", "elix")

        assert list(table.columns) == ["term"]
        assert table.empty

    def test_identical_input_gives_identical_csv(self, tmp_path):
        results = [
            lasso_result("B", {"elix_CHF": 0.51234567, "elix_DM": 0.0}),
            lasso_result("A", {"elix_DM": 0.2, "elix_CHF": 0.3}),
        ]
        normalize(results, "lasso", "elix").to_csv(tmp_path / "first.csv", index=False)
        normalize(list(reversed(results)), "lasso", "elix").to_csv(tmp_path / "second.csv", index=False)

        assert (tmp_path / "first.csv").read_bytes() == (tmp_path / "second.csv").read_bytes()


class TestWideHelpers:

    def test_wide_to_triples_skips_missing(self):
        table = pd.DataFrame({"term": ["CHF", "DM"], "A": [1.0, np.nan], "B": [2.0, 3.0]})
        triples = wide_to_triples(table)

        assert list(triples.itertuples(index=False, name=None)) == [
            ("A", "CHF", 1.0),
            ("B", "CHF", 2.0),
            ("B", "DM", 3.0),
        ]

    def test_never_selected_terms(self):
        table = pd.DataFrame({
            "term": ["CHF", "DM", "HTN"],
            "A": [0.4, 0.0, 0.0],
            "B": [0.0, 0.0, np.nan],
        })

        assert never_selected_terms(table) == ["DM", "HTN"]

    def test_never_selected_empty_table(self):
        assert never_selected_terms(pd.DataFrame(columns=["term"])) == []
