"""
Unit Tests for Settings and Constants

Tests default values, validators, grouped views and the settings singleton.
"""

import pytest
from pydantic import ValidationError

from possibility_engine.core.config.constants import (
    PRIORITY_RANK,
    CircuitState,
    Priority,
    Stage,
    StreamEventType,
)
from possibility_engine.core.config.settings import Settings, get_settings, reload_settings


@pytest.mark.unit
class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.POOL_MAX_CONCURRENCY == 6
        assert settings.CB_FAILURE_THRESHOLD == 3
        assert settings.GENERATION_MAX_RETRIES == 3
        assert settings.HIGH_PRIORITY_INDEX_THRESHOLD == 8
        assert settings.EXECUTION_BASE_URL is None
        assert settings.API_BASE_PATH == "/api/v1"

    def test_grouped_views_mirror_flat_fields(self):
        settings = Settings(_env_file=None, POOL_MAX_CONCURRENCY=4, CB_RECOVERY_TIMEOUT=12.5,
                            GENERATION_MAX_RETRIES=1, STREAM_STAGGER_DELAY=0.05)

        assert settings.pool.POOL_MAX_CONCURRENCY == 4
        assert settings.circuit_breaker.CB_RECOVERY_TIMEOUT == 12.5
        assert settings.generation.GENERATION_MAX_RETRIES == 1
        assert settings.streaming.STREAM_STAGGER_DELAY == 0.05

    def test_log_level_is_normalized(self):
        settings = Settings(_env_file=None, LOG_LEVEL="debug")
        assert settings.logging.LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_LEVEL="LOUD")

    @pytest.mark.parametrize("field", ["POOL_MAX_CONCURRENCY", "CB_FAILURE_THRESHOLD"])
    def test_positive_fields_reject_zero(self, field):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: 0})

    def test_negative_retry_budget_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, GENERATION_MAX_RETRIES=-1)

    def test_environment_variables_override_defaults(self, monkeypatch):
        monkeypatch.setenv("POOL_MAX_CONCURRENCY", "9")
        assert Settings(_env_file=None).POOL_MAX_CONCURRENCY == 9

    def test_get_settings_is_singleton_until_reloaded(self):
        first = get_settings()
        assert get_settings() is first

        reloaded = reload_settings()
        assert reloaded is not first
        assert get_settings() is reloaded


@pytest.mark.unit
class TestConstants:
    def test_priority_rank_orders_high_first(self):
        ordered = sorted(Priority, key=lambda p: p.rank)
        assert ordered == [Priority.HIGH, Priority.MEDIUM, Priority.LOW]
        assert set(PRIORITY_RANK) == set(Priority)

    def test_enums_are_string_valued(self):
        assert CircuitState.HALF_OPEN == "half_open"
        assert StreamEventType.POSSIBILITY_COMPLETE.value == "possibility_complete"
        assert Stage.CIRCUIT_BREAKER.value.startswith("CB_")
