"""Shared test fixtures for unbind."""

import os
import subprocess
from pathlib import Path
from typing import Sequence

import pytest
import structlog

from unbind.models import PortRecord, Protocol, ScanError
from unbind.probes import Probe, Strategy

PROC_NET_HEADER = (
    "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt"
    "   uid  timeout inode"
)


@pytest.fixture(autouse=True)
def quiet_structlog():
    """Keep structlog's default stdout printer out of captured CLI output."""
    structlog.configure(logger_factory=structlog.ReturnLoggerFactory())
    yield
    structlog.reset_defaults()


def completed(
    stdout: str = "", returncode: int = 0, stderr: str = "", argv: Sequence[str] = ()
) -> subprocess.CompletedProcess:
    """Build the CompletedProcess a real tool would have produced."""
    return subprocess.CompletedProcess(list(argv), returncode, stdout=stdout, stderr=stderr)


class FakeRunner:
    """Stands in for ToolRunner. Unknown commands behave like a missing tool."""

    def __init__(self, responses: dict[tuple[str, ...], subprocess.CompletedProcess] | None = None):
        self.responses = responses or {}
        self.calls: list[list[str]] = []

    def __call__(self, argv: Sequence[str]) -> subprocess.CompletedProcess:
        self.calls.append(list(argv))
        key = tuple(argv)
        if key not in self.responses:
            raise ScanError(f"[Errno 2] No such file or directory: '{argv[0]}'")
        return self.responses[key]


class StaticProbe(Probe):
    """Probe with canned strategies, for scanner and surface tests."""

    name = "static"

    def __init__(
        self,
        records: list[PortRecord] | None = None,
        error: str | None = None,
        kill_error: str | None = None,
    ):
        super().__init__(FakeRunner())
        self.records = records or []
        self.error = error
        self.kill_error = kill_error
        self.killed: list[int] = []

    def _scan(self) -> list[PortRecord]:
        if self.error is not None:
            raise ScanError(self.error)
        return list(self.records)

    def strategies(self) -> list[Strategy]:
        return [Strategy("static", self._scan)]

    def terminate(self, pid: int) -> None:
        if self.kill_error is not None:
            raise ScanError(self.kill_error)
        self.killed.append(pid)


def make_record(
    port: int = 3000,
    pid: int = 1234,
    process_name: str = "node",
    protocol: Protocol = Protocol.TCP,
    local_address: str = "0.0.0.0",
) -> PortRecord:
    """Create a PortRecord with sensible defaults for testing."""
    return PortRecord(
        port=port,
        pid=pid,
        process_name=process_name,
        protocol=protocol,
        local_address=local_address,
    )


def proc_net_row(
    local: str, state: str = "0A", inode: int = 0, remote: str = "00000000:0000"
) -> str:
    """Format one /proc/net/tcp row."""
    return (
        f"   0: {local} {remote} {state} 00000000:00000000 00:00000000 00000000"
        f"  1000        0 {inode} 1 0000000000000000 100 0 0 10 0"
    )


def make_proc_tree(
    root: Path,
    tables: dict[str, list[str]],
    sockets: dict[int, list[int]] | None = None,
) -> Path:
    """Build a fake /proc: net tables plus fd symlinks pointing at socket inodes.

    Args:
        root: Directory to build under
        tables: Table name (tcp, tcp6, ...) → data rows (header added)
        sockets: PID → inodes that process holds open
    """
    net = root / "net"
    net.mkdir(parents=True)
    for name, rows in tables.items():
        (net / name).write_text("\n".join([PROC_NET_HEADER, *rows]) + "\n")

    for pid, inodes in (sockets or {}).items():
        fd_dir = root / str(pid) / "fd"
        fd_dir.mkdir(parents=True)
        os.symlink("/dev/null", fd_dir / "0")
        for fd, inode in enumerate(inodes, start=3):
            os.symlink(f"socket:[{inode}]", fd_dir / str(fd))
    return root
