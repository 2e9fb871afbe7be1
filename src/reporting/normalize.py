"""Normalization of strategy outputs into long records and wide comparison tables.

Long format: one row per (cohort, term, metric, value).
Wide format: one row per family term (cleaned label), one column per cohort
holding the strategy's primary metric; absence is NaN.
"""

import re
from collections.abc import Iterable, Mapping

import pandas as pd

from src.selection.base import SelectionResult


LONG_COLUMNS = ["cohort", "term", "metric", "value"]

PRIMARY_METRIC = {
    "forward": "odds_ratio",
    "lasso": "coefficient",
    "random_forest": "importance",
}

# Suffixes that model formulas append to boolean indicators, e.g. elix_CHFTRUE
# or elix_CHF[T.True]
_BOOLEAN_SUFFIX = re.compile(r"(\[T\.(True|1)\]|TRUE|True)$")


def clean_term_label(term: str, prefix: str | None = None) -> str:
    """Strip boolean-suffix artifacts and the family prefix from a term name.

    Example:
        >>> clean_term_label("elix_CHFTRUE", "elix_")
        'CHF'
    """
    label = _BOOLEAN_SUFFIX.sub("", str(term))
    if prefix and label.startswith(prefix):
        label = label[len(prefix):]
    return label


def to_long(result: SelectionResult) -> pd.DataFrame:
    """Flatten one SelectionResult into (cohort, term, metric, value) rows.

    The primary metric is always emitted; ``ci_lower``, ``ci_upper`` and
    ``p_value`` only where the strategy produced them.
    """
    frames = []
    for column, metric in [
        ("estimate", result.metric),
        ("ci_lower", "ci_lower"),
        ("ci_upper", "ci_upper"),
        ("p_value", "p_value"),
    ]:
        values = result.terms[["term", column]].dropna(subset=[column])
        if column != "estimate" and values.empty:
            continue
        frames.append(pd.DataFrame({
            "cohort": result.cohort,
            "term": values["term"].astype(str),
            "metric": metric,
            "value": values[column].astype(float),
        }))

    if not frames:
        return pd.DataFrame(columns=LONG_COLUMNS)
    return pd.concat(frames, ignore_index=True)[LONG_COLUMNS]


def normalize(
    results: Mapping[str, SelectionResult] | Iterable[SelectionResult],
    strategy: str,
    family: str,
    prefix: str | None = None,
) -> pd.DataFrame:
    """Pivot per-cohort results into a wide comparison table.

    Only family terms are kept (fixed covariates are dropped), labels are
    cleaned, rows are sorted by label and cohort columns by name, so identical
    inputs always produce identical tables.

    Args:
        results: SelectionResults (or a cohort -> SelectionResult mapping)
        strategy: Strategy name, selects the primary metric
        family: Family name, e.g. ``elix``
        prefix: Column prefix of the family (defaults to ``f"{family}_"``)

    Returns:
        DataFrame with column ``term`` followed by one column per cohort
    """
    if isinstance(results, Mapping):
        results = results.values()
    results = list(results)
    prefix = prefix or f"{family}_"

    if not results:
        return pd.DataFrame(columns=["term"])

    metric = PRIMARY_METRIC.get(strategy, results[0].metric)
    long = pd.concat([to_long(r) for r in results], ignore_index=True)
    long = long[(long["metric"] == metric) & long["term"].str.startswith(prefix)].copy()
    long["cohort"] = long["cohort"].astype(str)
    long["term"] = long["term"].map(lambda t: clean_term_label(t, prefix))

    cohorts = sorted({str(r.cohort) for r in results})
    wide = (
        long.drop_duplicates(subset=["cohort", "term"])
        .pivot(index="term", columns="cohort", values="value")
        .reindex(columns=cohorts)
        .sort_index()
    )
    wide.columns.name = None
    return wide.rename_axis("term").reset_index()


def wide_to_triples(table: pd.DataFrame) -> pd.DataFrame:
    """Inverse of the pivot: (cohort, term, value) rows for non-missing cells."""
    long = table.melt(id_vars="term", var_name="cohort", value_name="value")
    long = long.dropna(subset=["value"])
    long["cohort"] = long["cohort"].astype(str)
    return long.sort_values(["cohort", "term"]).reset_index(drop=True)[["cohort", "term", "value"]]


def never_selected_terms(table: pd.DataFrame) -> list[str]:
    """Labels whose value is zero (or missing) in every cohort column."""
    cohort_cols = [c for c in table.columns if c != "term"]
    if not cohort_cols or table.empty:
        return []
    zero = (table[cohort_cols].fillna(0.0) == 0).all(axis=1)
    return sorted(table.loc[zero, "term"].tolist())
