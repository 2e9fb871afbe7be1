"""Predictor-family selection and the shared design-matrix encoding.

A predictor family is one comorbidity coding system whose indicator columns
share a name prefix:

- Elixhauser: ``elix_``
- Charlson: ``cd_``
- HCC: ``hcc_``

Every strategy models the outcome on the fixed covariates (standardized age
and sex) plus the family's indicators, and every strategy encodes them through
:func:`build_design_matrix` so that coefficients are comparable.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from src.errors import NoMatchingColumnsError


FAMILY_PREFIXES = {
    "elix": "elix_",
    "elixhauser": "elix_",
    "cd": "cd_",
    "charlson": "cd_",
    "hcc": "hcc_",
}


@dataclass(frozen=True)
class FamilySpec:
    """Formula-level description of one family's model."""

    name: str
    prefix: str
    outcome: str
    fixed_covariates: tuple[str, ...]
    family_terms: tuple[str, ...]
    cohort_col: str = "cohort"

    @property
    def columns(self) -> list[str]:
        return [self.cohort_col, self.outcome, *self.fixed_covariates, *self.family_terms]

    @property
    def formula(self) -> str:
        rhs = " + ".join([*self.fixed_covariates, *self.family_terms]) or "1"
        return f"{self.outcome} ~ {rhs}"


def resolve_prefix(family: str) -> str:
    """Map a family name (``elix``, ``charlson``...) or raw prefix to its prefix."""
    key = family.lower().rstrip("_")
    if key in FAMILY_PREFIXES:
        return FAMILY_PREFIXES[key]
    return family if family.endswith("_") else f"{family}_"


def select_family(
    patients: pd.DataFrame,
    family: str,
    outcome: str = "isreadmit30dc",
    fixed_covariates: tuple[str, ...] = ("agyradm_s", "sex"),
    cohort_col: str = "cohort",
) -> tuple[pd.DataFrame, FamilySpec]:
    """Extract the modeling frame for one predictor family.

    Args:
        patients: Patient-level table (train, test or full)
        family: Family name or column prefix
        outcome: Binary outcome column
        fixed_covariates: Covariates included in every model
        cohort_col: Cohort column, carried along for per-cohort splitting

    Returns:
        Tuple of (modeling frame, FamilySpec)

    Raises:
        NoMatchingColumnsError: If no column starts with the family prefix
    """
    prefix = resolve_prefix(family)
    family_terms = tuple(c for c in patients.columns if str(c).startswith(prefix))

    if not family_terms:
        raise NoMatchingColumnsError(
            f"No columns with prefix '{prefix}' for family '{family}'"
        )

    spec = FamilySpec(
        name=prefix.rstrip("_"),
        prefix=prefix,
        outcome=outcome,
        fixed_covariates=tuple(fixed_covariates),
        family_terms=family_terms,
        cohort_col=cohort_col,
    )
    return patients[spec.columns].copy(), spec


def cohort_frames(frame: pd.DataFrame, cohort_col: str = "cohort") -> dict[str, pd.DataFrame]:
    """Split a modeling frame into a cohort -> sub-frame mapping (sorted keys)."""
    return {
        cohort: frame[frame[cohort_col] == cohort]
        for cohort in sorted(frame[cohort_col].dropna().unique())
    }


def _is_numeric(values: pd.Series) -> bool:
    return pd.api.types.is_bool_dtype(values) or pd.api.types.is_numeric_dtype(values)


def _encode_covariate(values: pd.Series, name: str, levels=None) -> pd.DataFrame:
    """Numeric and 0/1 covariates pass through; categoricals become drop-first one-hot.

    ``levels`` fixes the category order (and so the dropped reference level);
    values outside it encode as all zeros.
    """
    if _is_numeric(values):
        return values.astype(float).to_frame(name)
    if levels is None:
        categorical = values.astype("category")
    else:
        categorical = pd.Series(pd.Categorical(values, categories=levels), index=values.index)
    return pd.get_dummies(categorical, prefix=name, drop_first=True, dtype=float)


def build_design_matrix(
    frame: pd.DataFrame,
    spec: FamilySpec,
    terms: tuple[str, ...] | list[str] | None = None,
    reference: pd.DataFrame | None = None,
) -> tuple[pd.DataFrame, pd.Series]:
    """Numeric design matrix (without intercept) and outcome vector.

    Fixed covariates come first, then family indicators in ``terms`` order
    (all family terms by default). Fixed covariates that are constant within
    ``frame`` are dropped; indicator columns are kept even when constant so
    callers decide how to treat them.

    Args:
        frame: Rows to encode
        spec: Family description
        terms: Family terms to include (default: all)
        reference: Frame a model was fitted on. When given, category levels
            and the kept fixed-covariate columns come from ``reference`` so
            new rows (e.g. a holdout) are encoded exactly like the fitted rows.

    Returns:
        Tuple of (X, y) with float X and int y
    """
    terms = spec.family_terms if terms is None else tuple(terms)
    basis = frame if reference is None else reference
    parts = []

    for cov in spec.fixed_covariates:
        levels = None if _is_numeric(basis[cov]) else basis[cov].astype("category").cat.categories
        fitted = _encode_covariate(basis[cov], cov, levels)
        kept = fitted.columns[fitted.nunique() > 1]
        encoded = fitted if reference is None else _encode_covariate(frame[cov], cov, levels)
        parts.append(encoded.reindex(columns=kept, fill_value=0.0))

    if terms:
        parts.append(frame[list(terms)].astype(float))

    X = pd.concat(parts, axis=1) if parts else pd.DataFrame(index=frame.index)
    y = frame[spec.outcome].astype(int)
    return X, y


def fixed_design_columns(X: pd.DataFrame, spec: FamilySpec) -> list[str]:
    """Columns of ``X`` that encode fixed covariates rather than family terms."""
    family = set(spec.family_terms)
    return [c for c in X.columns if c not in family]


def informative_terms(frame: pd.DataFrame, spec: FamilySpec) -> list[str]:
    """Family terms that are not constant within ``frame`` (column order)."""
    return [t for t in spec.family_terms if frame[t].nunique(dropna=True) > 1]


def has_both_classes(y: pd.Series | np.ndarray) -> bool:
    values = np.unique(np.asarray(y))
    return len(values) == 2
