"""
Tests for structured logging configuration.
"""

import json

import pytest
import structlog

from ai_relay.logging_config import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


def test_unknown_level_rejected():
    with pytest.raises(ValueError, match="Unknown log level: LOUD"):
        configure_logging(log_level="LOUD")


def test_json_logs_go_to_stderr(capsys):
    configure_logging(json_logs=True, log_level="INFO")

    structlog.get_logger("ai_relay.test").info("router.backend_selected", backend="groq")

    captured = capsys.readouterr()
    assert captured.out == ""
    event = json.loads(captured.err.strip().splitlines()[-1])
    assert event["event"] == "router.backend_selected"
    assert event["backend"] == "groq"
    assert event["level"] == "info"
    assert event["logger"] == "ai_relay.test"


def test_level_filters_events(capsys):
    configure_logging(json_logs=True, log_level="WARNING")

    structlog.get_logger("ai_relay.test").info("context.built")

    assert capsys.readouterr().err == ""
