"""PID→process name correlation.

Two independent mechanisms:
- Socket inode walk: match ``/proc/<pid>/fd/*`` link targets against
  ``socket:[<inode>]`` to find the owner of a /proc/net table row (Linux).
- Process listing: a PID→name table captured from a separate query
  (psutil on Linux, ``tasklist`` on Windows).
"""

import os
from pathlib import Path

import psutil
import structlog

from unbind.models import UNKNOWN_PROCESS
from unbind.parsing import parse_tasklist_csv
from unbind.runner import Runner, check_output

log = structlog.get_logger()

PROC_ROOT = Path("/proc")
TASKLIST_ARGS = ["tasklist", "/FO", "CSV", "/NH"]


def socket_link(inode: int) -> str:
    """Return the fd link target the kernel uses for a socket inode."""
    return f"socket:[{inode}]"


def process_names() -> dict[int, str]:
    """Snapshot PID→name for every process visible to this user."""
    names: dict[int, str] = {}
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            info = proc.info
            if info.get("name"):
                names[info["pid"]] = info["name"]
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return names


def tasklist_names(runner: Runner) -> dict[int, str]:
    """Capture PID→image name from ``tasklist /FO CSV /NH``.

    Raises:
        ScanError: If tasklist cannot be run or exits non-zero.
    """
    return parse_tasklist_csv(check_output(runner, TASKLIST_ARGS))


class InodeResolver:
    """Resolve socket inodes to their owning process by walking /proc.

    The fd tree is walked at most once per instance; build a new resolver for
    each scan. When several processes share a socket the lowest PID wins.
    """

    def __init__(self, proc_root: Path = PROC_ROOT, names: dict[int, str] | None = None):
        """Initialize the resolver.

        Args:
            proc_root: Root of the process filesystem
            names: PID→name table; captured with psutil on first use if None
        """
        self.proc_root = proc_root
        self._names = names
        self._owners: dict[str, int] | None = None

    def _pids(self) -> list[int]:
        try:
            entries = os.listdir(self.proc_root)
        except OSError as e:
            log.warning("proc_root_unreadable", path=str(self.proc_root), error=str(e))
            return []
        return sorted(int(name) for name in entries if name.isascii() and name.isdigit())

    def _walk(self) -> dict[str, int]:
        """Map every socket link target to the first PID holding it."""
        owners: dict[str, int] = {}
        for pid in self._pids():
            fd_dir = self.proc_root / str(pid) / "fd"
            try:
                fds = os.listdir(fd_dir)
            except OSError:
                # Other users' processes, or already exited
                continue
            for fd in fds:
                try:
                    target = os.readlink(fd_dir / fd)
                except OSError:
                    continue
                if target.startswith("socket:[") and target not in owners:
                    owners[target] = pid
        log.debug("inode_walk_complete", sockets=len(owners))
        return owners

    def name_for(self, pid: int) -> str:
        """Return the name of ``pid`` from the process table, or "unknown"."""
        if self._names is None:
            self._names = process_names()
        return self._names.get(pid, UNKNOWN_PROCESS)

    def resolve(self, inode: int) -> tuple[int, str]:
        """Return (pid, name) owning ``inode``, or (0, "unknown") if none does."""
        if self._owners is None:
            self._owners = self._walk()
        pid = self._owners.get(socket_link(inode))
        if pid is None:
            return 0, UNKNOWN_PROCESS
        return pid, self.name_for(pid)
