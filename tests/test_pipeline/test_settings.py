"""Tests for run configuration defaults, validation and environment overrides."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from config.settings import Settings


@pytest.fixture(autouse=True)
def _isolate_from_dotenv(monkeypatch, tmp_path):
    """Prevent .env file from leaking into settings tests."""
    for name in ("RANDOM_SEED", "FAMILIES", "STRATEGIES", "LASSO_FOLDS", "N_WORKERS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)  # no .env in tmp_path


class TestDefaults:

    def test_run_defaults(self):
        s = Settings()

        assert s.random_seed == 7
        assert s.train_fraction == 0.75
        assert s.families == ["elix", "cd", "hcc"]
        assert s.strategies == ["forward", "lasso", "random_forest"]
        assert s.lasso_folds == 10
        assert s.n_workers == 0

    def test_penalty_grid_defaults(self):
        s = Settings()

        assert s.lasso_n_penalties == 100
        assert s.lasso_log_penalty_max == 10.0
        assert s.lasso_log_penalty_min == -2.0

    def test_paths_are_paths(self):
        assert isinstance(Settings().output_dir, Path)


class TestValidation:

    def test_ascending_penalty_grid_rejected(self):
        with pytest.raises(ValidationError, match="LASSO_LOG_PENALTY_MAX"):
            Settings(lasso_log_penalty_max=-3.0, lasso_log_penalty_min=-2.0)

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError):
            Settings(strategies=["ridge"])

    def test_empty_family_list_rejected(self):
        with pytest.raises(ValidationError, match="predictor family"):
            Settings(families=[])

    def test_single_fold_rejected(self):
        with pytest.raises(ValidationError):
            Settings(lasso_folds=1)


class TestEnvironment:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RANDOM_SEED", "11")
        monkeypatch.setenv("FAMILIES", '["cd"]')
        monkeypatch.setenv("LASSO_FOLDS", "5")

        s = Settings()

        assert s.random_seed == 11
        assert s.families == ["cd"]
        assert s.lasso_folds == 5

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("N_WORKERS=3\n")

        assert Settings().n_workers == 3
