"""Tests for structlog configuration."""

import json

import structlog

from credbridge.logging_config import configure_logging


class TestConfigureLogging:
    def teardown_method(self):
        configure_logging("WARNING")

    def test_json_renderer(self, capsys):
        configure_logging("INFO", "json")

        structlog.get_logger("test").info("relayer.delivered", sequence=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "relayer.delivered"
        assert entry["sequence"] == 3
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_level_filters(self, capsys):
        configure_logging("WARNING", "json")

        log = structlog.get_logger("test")
        log.info("hidden")
        log.warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_contextvars_are_merged(self, capsys):
        configure_logging("INFO", "json")

        with structlog.contextvars.bound_contextvars(relayer="relayer-a"):
            structlog.get_logger("test").info("relayer.started")

        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["relayer"] == "relayer-a"

    def test_console_renderer(self, capsys):
        configure_logging("DEBUG", "console")
        structlog.get_logger("test").debug("discovery.no_emissions", head=7)
        assert "discovery.no_emissions" in capsys.readouterr().out
