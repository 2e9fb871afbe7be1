import numpy as np
import pandas as pd
import pytest
from pathlib import Path
from scipy.special import expit

from config.settings import Settings
from src.cohorts.data import add_standardized_age


ELIX_TERMS = ["elix_CHF", "elix_HTN", "elix_DM", "elix_RENAL", "elix_COPD"]
CD_TERMS = ["cd_MI", "cd_CHF", "cd_DEMENTIA", "cd_CANCER"]


@pytest.fixture
def synthetic_patients() -> pd.DataFrame:
    """160 admissions in 2 cohorts (A=100, B=60), 5 Elixhauser and 4 Charlson indicators.

    Readmission depends on age, elix_CHF, elix_RENAL and cd_MI, so the
    selection strategies have real signal to find. No HCC columns.
    """
    rng = np.random.default_rng(7)
    n = 160

    df = pd.DataFrame({
        "cohort": ["A"] * 100 + ["B"] * 60,
        "agyradm": rng.normal(65, 12, n).round(),
        "sex": rng.choice(["F", "M"], n),
    })
    for term in ELIX_TERMS:
        df[term] = rng.binomial(1, 0.3, n)
    for term in CD_TERMS:
        df[term] = rng.binomial(1, 0.25, n)

    logit = (
        -1.2
        + 0.03 * (df["agyradm"] - 65)
        + 1.5 * df["elix_CHF"]
        + 1.0 * df["elix_RENAL"]
        + 0.8 * df["cd_MI"]
    )
    df["isreadmit30dc"] = rng.binomial(1, expit(logit))

    return df


@pytest.fixture
def standardized_patients(synthetic_patients: pd.DataFrame) -> pd.DataFrame:
    """synthetic_patients with the global agyradm_s column added."""
    return add_standardized_age(synthetic_patients)


@pytest.fixture
def fast_settings(tmp_path: Path, monkeypatch) -> Settings:
    """Settings with small grids and forests so tests run quickly."""
    monkeypatch.chdir(tmp_path)  # no .env in tmp_path
    return Settings(
        patients_path=tmp_path / "patients.csv",
        labels_path=None,
        output_dir=tmp_path / "tables",
        cache_dir=tmp_path / "cache",
        families=["elix", "cd"],
        lasso_folds=3,
        lasso_n_penalties=12,
        lasso_log_penalty_max=1.0,
        lasso_log_penalty_min=-3.0,
        rf_n_estimators=20,
        rf_tune_folds=3,
        rf_rfe_folds=3,
        n_workers=1,
    )
