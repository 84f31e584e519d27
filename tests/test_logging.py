# tests/test_logging.py
"""Tests for console helpers and structured log configuration."""

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from power_scope import logging as console
from power_scope.config import Config


def _make_path_prop(path: Path):
    """Create a property that returns a fixed path."""
    return property(lambda self: path)


@pytest.fixture
def restore_logging():
    """Undo global logging configuration after the test."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()


class TestConfigure:
    def test_events_written_as_json_lines(self, tmp_path: Path, restore_logging) -> None:
        """configure() routes structlog events to the rotating JSON log."""
        state_dir = tmp_path / "state"
        log_path = state_dir / "parser.log"
        with (
            patch.object(Config, "state_dir", new_callable=lambda: _make_path_prop(state_dir)),
            patch.object(Config, "log_path", new_callable=lambda: _make_path_prop(log_path)),
        ):
            console.configure(Config())

        console.get_structlog().info("process_exited", pid=202, name="Tab")
        for handler in logging.getLogger().handlers:
            handler.flush()

        record = json.loads(log_path.read_text().splitlines()[-1])
        assert record["event"] == "process_exited"
        assert record["pid"] == 202
        assert record["source"] == "parser"
        assert record["level"] == "info"
        assert "ts" in record

    def test_level_filters_events(self, tmp_path: Path, restore_logging) -> None:
        """Events below the configured level are not written."""
        state_dir = tmp_path / "state"
        log_path = state_dir / "parser.log"
        config = Config()
        config.logging.level = "warning"
        with (
            patch.object(Config, "state_dir", new_callable=lambda: _make_path_prop(state_dir)),
            patch.object(Config, "log_path", new_callable=lambda: _make_path_prop(log_path)),
        ):
            console.configure(config)

        log = console.get_structlog()
        log.debug("state_transition", old="in_sample", new="power_metrics")
        log.warning("parser_structural_error", error="boom")
        for handler in logging.getLogger().handlers:
            handler.flush()

        events = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert events == ["parser_structural_error"]


class TestConsoleHelpers:
    def test_parse_complete_clean(self, capsys) -> None:
        """A clean run reports the sample count."""
        console.parse_complete("capture.txt", 3, 0)
        out = capsys.readouterr().out
        assert "capture.txt" in out
        assert "3 samples" in out

    def test_parse_complete_with_errors(self, capsys) -> None:
        """Errors are shown as a warning."""
        console.parse_complete("capture.txt", 1, 2)
        out = capsys.readouterr().out
        assert "1 sample," in out
        assert "2" in out
        assert "[warn]" in out

    def test_config_invalid(self, capsys) -> None:
        """Config errors are reported at error level."""
        console.config_invalid("timeout must be > 0")
        out = capsys.readouterr().out
        assert "Config invalid: timeout must be > 0" in out
