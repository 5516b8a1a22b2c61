"""Console output with Rich formatting, plus the structlog file log.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (scan_summary, process_killed, etc.)
5. Structlog configuration (configure, get_structlog)

Console output uses Rich markup for colors. The JSON file log written through
structlog is separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from unbind.config import Config

# Diagnostics go to stderr so JSON on stdout stays clean
_console = Console(highlight=False, stderr=True)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    KILL = "[bold red]☠[/]"
    SCAN = "🔍"
    SAVE = "💾"
    STAR = "[yellow]★[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def scan_summary(shown: int, total: int) -> None:
    """Log how many listeners were found and how many survived the filter."""
    if shown == total:
        info(f"[cyan]{total}[/] listening sockets", Icon.SCAN)
    else:
        info(f"[cyan]{shown}[/] of {total} listening sockets [dim](filtered)[/]", Icon.SCAN)


def scan_failed(error_msg: str) -> None:
    """Log scan failure."""
    error(f"Scan failed: {error_msg}", Icon.FAIL)


def no_listener(port: int) -> None:
    """Log that nothing listens on a port."""
    info(f"No listener on port [cyan]{port}[/]")


def process_killed(name: str, pid: int, port: int | None = None) -> None:
    """Log process killed."""
    where = f" on port [cyan]{port}[/]" if port is not None else ""
    info(f"Killed [cyan]{name}[/] [dim]({pid})[/]{where}", Icon.KILL)


def kill_failed(pid: int, error_msg: str) -> None:
    """Log kill failure."""
    error(f"Could not kill {pid}: {error_msg}", Icon.FAIL)


def owner_unknown(port: int) -> None:
    """Log that a port's owner could not be attributed."""
    warn(f"Owner of port [cyan]{port}[/] is unknown. Try again with more privileges")


def favorite_saved(port: int, label: str) -> None:
    """Log favorite added or renamed."""
    info(f"Port [cyan]{port}[/] saved as [bold]{label}[/]", Icon.STAR)


def favorite_removed(port: int) -> None:
    """Log favorite removed."""
    info(f"Port [cyan]{port}[/] removed from favorites")


def history_cleared(count: int) -> None:
    """Log kill history cleared."""
    info(f"[dim]Cleared {count} history entries[/]")


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]", Icon.SAVE)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "cli") -> None:
    """Configure structlog to write JSON lines to the rotating log file.

    Args:
        config: Application config with paths and rotation settings
        source: Value of the ``source`` field on every event (cli, tui)
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance for the JSON file log."""
    return structlog.get_logger()
