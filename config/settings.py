from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


StrategyName = Literal["forward", "lasso", "random_forest"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    patients_path: Path = Field(default=Path("data/processed/patients.parquet"))
    labels_path: Path | None = Field(default=Path("data/reference/comorbidity_labels.csv"))
    output_dir: Path = Field(default=Path("outputs/tables"))
    cache_dir: Path = Field(default=Path("outputs/cache"))

    # Columns
    cohort_col: str = Field(default="cohort")
    outcome_col: str = Field(default="isreadmit30dc")
    age_col: str = Field(default="agyradm")
    sex_col: str = Field(default="sex")

    # What to run
    families: list[str] = Field(default=["elix", "cd", "hcc"])
    strategies: list[StrategyName] = Field(default=["forward", "lasso", "random_forest"])

    # Partitioning
    random_seed: int = Field(default=7)
    train_fraction: float = Field(default=0.75)

    # Forward stepwise
    stepwise_max_steps: int = Field(default=20, ge=1)
    stepwise_maxiter: int = Field(default=100, ge=1)

    # Lasso
    lasso_folds: int = Field(default=10, ge=2)
    lasso_n_penalties: int = Field(default=100, ge=1)
    lasso_log_penalty_max: float = Field(default=10.0)
    lasso_log_penalty_min: float = Field(default=-2.0)
    lasso_maxiter: int = Field(default=1000, ge=1)

    # Random forest
    rf_n_estimators: int = Field(default=500, ge=1)
    rf_tune_folds: int = Field(default=5, ge=2)
    rf_rfe_folds: int = Field(default=5, ge=2)

    # Parallelism
    n_workers: int = Field(default=0, ge=0)  # 0 = all cores

    @model_validator(mode="after")
    def _validate_penalty_grid(self) -> "Settings":
        if self.lasso_log_penalty_max <= self.lasso_log_penalty_min:
            raise ValueError(
                "LASSO_LOG_PENALTY_MAX must be greater than LASSO_LOG_PENALTY_MIN "
                "(the penalty grid is descending)."
            )
        return self

    @model_validator(mode="after")
    def _validate_families(self) -> "Settings":
        if not self.families:
            raise ValueError("At least one predictor family is required.")
        if not self.strategies:
            raise ValueError("At least one selection strategy is required.")
        return self
