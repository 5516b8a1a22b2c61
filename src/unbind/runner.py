"""Synchronous execution of external introspection tools."""

import subprocess
from typing import Callable, Sequence

import structlog

from unbind.models import ScanError

log = structlog.get_logger()

# Anything that runs argv and hands back a CompletedProcess with text output.
# Probes take one of these so tests can replace the real tools.
Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]


class ToolRunner:
    """Run one external command and wait for it.

    A missing tool, an I/O error, or an expired timeout raises ScanError.
    Exit status is left to the caller: some tools use non-zero codes for
    "nothing matched".
    """

    def __init__(self, timeout: float | None = None):
        """Initialize the runner.

        Args:
            timeout: Seconds to wait for each command, None to wait forever
        """
        self.timeout = timeout

    def __call__(self, argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
        log.debug("tool_invoked", argv=list(argv))
        try:
            return subprocess.run(
                list(argv),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ScanError(f"{argv[0]} timed out after {e.timeout}s") from e
        except OSError as e:
            raise ScanError.from_os_error(e) from e


def diagnostic(completed: "subprocess.CompletedProcess[str]") -> str:
    """Return the tool's own error text: stderr, or stdout when stderr is empty."""
    text = (completed.stderr or "").strip()
    if not text:
        text = (completed.stdout or "").strip()
    return text


def check_output(runner: Runner, argv: Sequence[str]) -> str:
    """Run a query and return its stdout, raising ScanError on non-zero exit."""
    completed = runner(argv)
    if completed.returncode != 0:
        detail = diagnostic(completed)
        message = f"{argv[0]} command failed"
        if detail:
            message = f"{message}: {detail}"
        log.debug("tool_failed", argv=list(argv), returncode=completed.returncode)
        raise ScanError(message)
    return completed.stdout or ""
