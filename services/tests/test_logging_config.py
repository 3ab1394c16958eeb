"""Tests for logging setup."""

import json
import logging

import pytest
import structlog

from blockrepair.logging_config import (
    APP_NAME,
    add_app_context,
    configure_logging,
    get_logger,
    leading_keys,
)


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestProcessors:
    def test_app_context(self) -> None:
        assert add_app_context(None, "info", {"event": "x"})["app"] == APP_NAME

    def test_leading_keys(self) -> None:
        event = {"block": "b", "event": "done", "timestamp": "t", "level": "info"}
        assert list(leading_keys(None, "info", event)) == ["level", "timestamp", "event", "block"]


class TestConfigureLogging:
    def test_json_lines(self, capsys) -> None:
        configure_logging(json_logs=True, log_level="INFO")

        get_logger("blockrepair.test").info("Block transition finished", block="01FZXYZABCDEF12")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "Block transition finished"
        assert record["block"] == "01FZXYZABCDEF12"
        assert record["level"] == "info"
        assert record["app"] == APP_NAME
        assert record["timestamp"].endswith("Z")

    def test_level_filters(self, capsys) -> None:
        configure_logging(json_logs=True, log_level="WARNING")

        get_logger("blockrepair.test").info("hidden")

        assert capsys.readouterr().out == ""

    def test_noisy_libraries_quieted(self) -> None:
        configure_logging(json_logs=False, log_level="DEBUG")

        assert logging.getLogger("botocore").level == logging.WARNING
