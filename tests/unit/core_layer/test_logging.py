"""
Unit Tests for Logging Module

Tests logger creation, request ID context, processors and log_stage.
"""

from unittest.mock import MagicMock

import pytest

from possibility_engine.core.config.constants import Stage
from possibility_engine.core.logging.logger import (
    add_request_id,
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    redact_secrets,
    set_request_id,
    setup_logging,
)


@pytest.mark.unit
class TestLoggerCreation:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger(__name__)
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_setup_logging_accepts_both_formats(self):
        setup_logging(log_level="DEBUG", log_format="console")
        setup_logging(log_level="INFO", log_format="json")


@pytest.mark.unit
class TestRequestContext:
    def test_set_and_clear_request_id(self):
        set_request_id("gen_123")
        assert get_request_id() == "gen_123"

        clear_request_id()
        assert get_request_id() is None

    def test_add_request_id_processor(self):
        set_request_id("gen_abc")
        try:
            event = add_request_id(None, "info", {"event": "hello"})
        finally:
            clear_request_id()
        assert event["request_id"] == "gen_abc"

    def test_add_request_id_skips_when_unset(self):
        clear_request_id()
        assert "request_id" not in add_request_id(None, "info", {"event": "hello"})


@pytest.mark.unit
class TestRedaction:
    @pytest.mark.parametrize("secret", ["sk-abc123DEF", "AIzaSyFAKEkey_1", "xai-abc123"])
    def test_api_keys_are_redacted(self, secret):
        event = redact_secrets(None, "info", {"event": f"calling provider with {secret}"})
        assert secret not in event["event"]
        assert "[REDACTED]" in event["event"]

    def test_plain_messages_untouched(self):
        event = redact_secrets(None, "info", {"event": "circuit opened"})
        assert event["event"] == "circuit opened"


@pytest.mark.unit
class TestLogStage:
    def test_stage_enum_is_logged_by_value(self):
        logger = MagicMock()
        log_stage(logger, Stage.CONNECTION_POOL, "Task enqueued", task_id="p1")
        logger.info.assert_called_once_with(
            "Task enqueued", stage="CP_CONNECTION_POOL", task_id="p1"
        )

    def test_string_stage_and_level(self):
        logger = MagicMock()
        log_stage(logger, "CB.3", "Circuit opened", level="error")
        logger.error.assert_called_once_with("Circuit opened", stage="CB.3")
