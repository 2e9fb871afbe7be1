"""Loading of the patient-level table and the comorbidity label file.

The patient table is produced upstream (ingestion and ICD-to-comorbidity
mapping are not part of this package). This module only reads it, checks the
required columns and adds the globally standardized age column.
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from src.errors import EmptyInputError, IOFailureError


logger = logging.getLogger(__name__)


REQUIRED_COLUMNS = ("cohort", "isreadmit30dc", "agyradm", "sex")


def load_patients(
    path: Path,
    required_columns: tuple[str, ...] = REQUIRED_COLUMNS,
) -> pd.DataFrame:
    """Read the patient-level table from parquet, feather or CSV.

    Args:
        path: Path to the serialized table
        required_columns: Columns that must be present

    Returns:
        DataFrame with one row per admission

    Raises:
        IOFailureError: If the file cannot be read
        EmptyInputError: If the table has no rows or lacks required columns
    """
    path = Path(path)

    try:
        if path.suffix == ".parquet":
            df = pd.read_parquet(path)
        elif path.suffix == ".feather":
            df = pd.read_feather(path)
        else:
            df = pd.read_csv(path)
    except OSError as e:
        raise IOFailureError(f"Could not read patient table {path}: {e}") from e

    if len(df) == 0:
        raise EmptyInputError(f"Patient table {path} has no rows")

    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise EmptyInputError(f"Patient table {path} is missing columns: {missing}")

    logger.info(f"Loaded {len(df)} admissions x {df.shape[1]} columns from {path}")
    return df


def add_standardized_age(
    df: pd.DataFrame,
    age_col: str = "agyradm",
    suffix: str = "_s",
) -> pd.DataFrame:
    """Add a zero-mean, unit-variance copy of the age column.

    Computed once on the full table, before any train/test split, so every
    cohort and partition shares the same scale.

    Returns:
        Copy of ``df`` with an added ``{age_col}{suffix}`` column
    """
    df = df.copy()
    age = df[age_col].astype(float)
    std = age.std(ddof=0)
    if not np.isfinite(std) or std == 0:
        df[f"{age_col}{suffix}"] = 0.0
    else:
        df[f"{age_col}{suffix}"] = (age - age.mean()) / std
    return df


def load_term_labels(path: Path | None) -> dict[str, str]:
    """Read the code -> human-readable label mapping used by reports.

    The file is delimited text with a header; the first column holds the
    indicator code and the second its label. ``.tsv``/``.txt`` files are read
    as tab-delimited, everything else as CSV. A missing path yields an empty
    mapping so reports fall back to raw codes.
    """
    if path is None:
        return {}

    path = Path(path)
    if not path.exists():
        logger.warning(f"Label file not found: {path} (using raw term codes)")
        return {}

    sep = "\t" if path.suffix in (".tsv", ".txt") else ","
    try:
        labels = pd.read_csv(path, sep=sep, dtype=str)
    except OSError as e:
        raise IOFailureError(f"Could not read label file {path}: {e}") from e

    if labels.shape[1] < 2:
        logger.warning(f"Label file {path} has fewer than 2 columns; ignoring it")
        return {}

    codes = labels.iloc[:, 0].str.strip()
    names = labels.iloc[:, 1].str.strip()
    return dict(zip(codes, names))
