"""Tests for console output and the structlog file log."""

import io
import json
import logging
import logging.handlers
from unittest.mock import MagicMock

import pytest
import structlog
from rich.console import Console

from unbind import logging as ulog
from unbind.config import Config, SystemConfig


@pytest.fixture
def console_output(monkeypatch) -> io.StringIO:
    """Capture console helper output as plain text."""
    buffer = io.StringIO()
    monkeypatch.setattr(
        ulog, "_console", Console(file=buffer, highlight=False, width=200, no_color=True)
    )
    return buffer


@pytest.fixture
def restore_root_logger():
    """Put the stdlib root logger back the way configure() found it."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConsoleHelpers:
    """Tests for Rich console helpers."""

    def test_info_has_timestamp_and_level(self, console_output):
        """Messages carry a time and level prefix."""
        ulog.info("hello")
        line = console_output.getvalue()
        assert "[info]" in line
        assert "hello" in line

    def test_markup_is_rendered(self, console_output):
        """Rich markup is interpreted, not printed literally."""
        ulog.warn("[cyan]3000[/] busy")
        output = console_output.getvalue()
        assert "3000 busy" in output
        assert "[cyan]" not in output

    def test_scan_summary_unfiltered(self, console_output):
        """All shown: one count."""
        ulog.scan_summary(4, 4)
        assert "4 listening sockets" in console_output.getvalue()

    def test_scan_summary_filtered(self, console_output):
        """Some hidden: both counts."""
        ulog.scan_summary(2, 7)
        output = console_output.getvalue()
        assert "2 of 7 listening sockets" in output
        assert "(filtered)" in output

    def test_process_killed_with_port(self, console_output):
        """Port is mentioned when known."""
        ulog.process_killed("node", 1234, 3000)
        output = console_output.getvalue()
        assert "Killed node (1234) on port 3000" in output

    def test_kill_failed(self, console_output):
        """Failures show the tool's message at error level."""
        ulog.kill_failed(5, "Failed to kill process: No such process")
        output = console_output.getvalue()
        assert "[err]" in output
        assert "Could not kill 5: Failed to kill process: No such process" in output

    def test_owner_unknown(self, console_output):
        """Unknown owners suggest more privileges."""
        ulog.owner_unknown(631)
        assert "more privileges" in console_output.getvalue()


class TestConfigure:
    """Tests for structlog file configuration."""

    def test_writes_json_lines(self, tmp_path, restore_root_logger):
        """Events land in the log file as JSON with ts, level and source."""
        config = MagicMock(spec=Config)
        config.state_dir = tmp_path / "state"
        config.log_path = tmp_path / "state" / "unbind.log"
        config.system = SystemConfig()

        ulog.configure(config, source="tui")
        structlog.get_logger().info("scan_complete", probe="linux", count=3)
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = config.log_path.read_text().splitlines()
        event = json.loads(lines[-1])
        assert event["event"] == "scan_complete"
        assert event["count"] == 3
        assert event["level"] == "info"
        assert event["source"] == "tui"
        assert "ts" in event

    def test_debug_filtered(self, tmp_path, restore_root_logger):
        """Debug events are below the file threshold."""
        config = MagicMock(spec=Config)
        config.state_dir = tmp_path
        config.log_path = tmp_path / "unbind.log"
        config.system = SystemConfig()

        ulog.configure(config)
        structlog.get_logger().debug("tool_invoked", argv=["ss"])
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert config.log_path.read_text() == ""

    def test_rotation_settings(self, tmp_path, restore_root_logger):
        """The file handler uses the configured rotation limits."""
        config = MagicMock(spec=Config)
        config.state_dir = tmp_path
        config.log_path = tmp_path / "unbind.log"
        config.system = SystemConfig(log_max_bytes=4096, log_backup_count=7)

        ulog.configure(config)
        (handler,) = logging.getLogger().handlers
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.maxBytes == 4096
        assert handler.backupCount == 7
