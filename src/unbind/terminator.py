"""Forced process termination via the platform kill tool."""

import structlog

from unbind.models import ScanError
from unbind.runner import Runner, diagnostic

log = structlog.get_logger()


def kill_command(pid: int, *, windows: bool = False) -> list[str]:
    """Return the argv that force-kills ``pid`` on this platform family."""
    if windows:
        return ["taskkill", "/F", "/PID", str(pid)]
    return ["kill", "-9", str(pid)]


def terminate(runner: Runner, pid: int, *, windows: bool = False) -> None:
    """Send one forced-termination request for ``pid``.

    No retry, no graceful attempt first, and no check that the process
    actually went away.

    Raises:
        ScanError: If the kill tool is missing or exits non-zero. The message
            carries the tool's own diagnostic text.
    """
    completed = runner(kill_command(pid, windows=windows))
    if completed.returncode != 0:
        detail = diagnostic(completed) or f"exit status {completed.returncode}"
        log.warning("kill_failed", pid=pid, returncode=completed.returncode, detail=detail)
        raise ScanError(f"Failed to kill process: {detail}")
    log.info("process_killed", pid=pid)
