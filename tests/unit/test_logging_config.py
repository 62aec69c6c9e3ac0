"""
Unit tests for logging configuration.
"""

import json
import logging

import pytest
import structlog

from hookd.logging_config import configure_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    aiohttp_level = logging.getLogger("aiohttp").level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("aiohttp").setLevel(aiohttp_level)
    structlog.reset_defaults()


class TestConfigureLogging:

    def test_json_output(self, restore_logging, capsys):
        configure_logging("INFO", json_format=True)

        structlog.get_logger("hookd.test").info("Bulk deleted requests", account_id="u1", deleted_count=500)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "Bulk deleted requests"
        assert event["account_id"] == "u1"
        assert event["deleted_count"] == 500
        assert event["level"] == "info"
        assert event["logger"] == "hookd.test"
        assert "timestamp" in event

    def test_stdlib_records_share_formatting(self, restore_logging, capsys):
        configure_logging("INFO", json_format=True)

        logging.getLogger("hookd.plain").warning("Scheduler started")

        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["event"] == "Scheduler started"
        assert event["level"] == "warning"

    def test_level_filtering(self, restore_logging, capsys):
        configure_logging("WARNING", json_format=True)

        structlog.get_logger("hookd.test").info("hidden")

        assert capsys.readouterr().err == ""
        assert logging.getLogger().level == logging.WARNING

    def test_aiohttp_quieted(self, restore_logging):
        configure_logging("DEBUG")

        assert logging.getLogger("aiohttp").level == logging.WARNING
