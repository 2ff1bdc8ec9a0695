"""Tests for migrationguard.config."""

import pytest
from pydantic import ValidationError

from migrationguard.config import AnalyzerConfig
from migrationguard.engine import EngineKind
from migrationguard.exceptions import ConfigurationError
from migrationguard.rules import VERSION_THRESHOLDS, Status


class TestAnalyzerConfig:
    def test_defaults(self):
        config = AnalyzerConfig()
        assert config.start_after is None
        assert config.fail_on is Status.UNSAFE
        assert config.thresholds() == VERSION_THRESHOLDS

    def test_fail_on_normalized(self):
        assert AnalyzerConfig(fail_on="Conditionally-Safe").fail_on is Status.CONDITIONALLY_SAFE

    def test_fail_on_invalid(self):
        with pytest.raises(ValidationError):
            AnalyzerConfig(fail_on="catastrophic")

    def test_frozen(self):
        config = AnalyzerConfig()
        with pytest.raises(ValidationError):
            config.start_after = "0001"

    def test_reported_units(self):
        config = AnalyzerConfig(start_after="0002_add_email")
        names = ["0001_create_users", "0002_add_email", "0003_index_email"]
        assert config.reported_units(names) == {2}
        assert AnalyzerConfig().reported_units(names) == {0, 1, 2}

    def test_reported_units_follow_batch_order(self):
        config = AnalyzerConfig(start_after="9_step")
        assert config.reported_units(["9_step", "10_step"]) == {1}

    def test_reported_units_unknown_name(self):
        config = AnalyzerConfig(start_after="0005_missing")
        with pytest.raises(ConfigurationError, match="0005_missing"):
            config.reported_units(["0001_create_users"])

    def test_threshold_overrides_merge(self):
        config = AnalyzerConfig(
            version_thresholds={
                "fast_column_default": {"mysql": "8.0.30"},
                "custom_feature": {"postgres": 15},
            }
        )
        merged = config.thresholds()
        assert merged["fast_column_default"][EngineKind.MYSQL] == (8, 0, 30)
        assert merged["fast_column_default"][EngineKind.POSTGRES] == (11,)
        assert merged["custom_feature"] == {EngineKind.POSTGRES: (15,)}
        assert VERSION_THRESHOLDS["fast_column_default"][EngineKind.MYSQL] == (8, 0, 12)

    def test_bad_threshold_version(self):
        with pytest.raises(ValidationError):
            AnalyzerConfig(version_thresholds={"fast_column_default": {"postgres": "eleven"}})


class TestFromEnv:
    def test_empty(self):
        assert AnalyzerConfig.from_env({}) == AnalyzerConfig()

    def test_values(self):
        config = AnalyzerConfig.from_env(
            {"MIGRATIONGUARD_START_AFTER": "0004_x", "MIGRATIONGUARD_FAIL_ON": "conditionally_safe"}
        )
        assert config.start_after == "0004_x"
        assert config.fail_on is Status.CONDITIONALLY_SAFE

    def test_invalid(self):
        with pytest.raises(ConfigurationError, match="MIGRATIONGUARD_"):
            AnalyzerConfig.from_env({"MIGRATIONGUARD_FAIL_ON": "sometimes"})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("MIGRATIONGUARD_START_AFTER", "0009_last")
        assert AnalyzerConfig.from_env().start_after == "0009_last"
