"""Platform probes: how each OS family is asked for its listening sockets.

A probe exposes an ordered list of scan strategies (primary first) and a
``terminate(pid)`` capability. The Scanner decides what to do when a strategy
fails; probes only know how to run their queries and parse the output.
"""

import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import structlog

from unbind.models import PortRecord, Protocol, ScanError
from unbind.parsing import (
    parse_lsof_line,
    parse_netstat_line,
    parse_proc_net_line,
    parse_ss_line,
)
from unbind.resolver import PROC_ROOT, InodeResolver, tasklist_names
from unbind.runner import Runner, ToolRunner, check_output, diagnostic
from unbind.terminator import terminate

log = structlog.get_logger()

UNSUPPORTED_MESSAGE = "Unsupported operating system"

SS_QUERIES = [
    (Protocol.TCP, ["ss", "-tlnp", "-H"]),
    (Protocol.UDP, ["ss", "-ulnp", "-H"]),
]
PROC_TABLES = [
    ("tcp", Protocol.TCP),
    ("tcp6", Protocol.TCP),
    ("udp", Protocol.UDP),
    ("udp6", Protocol.UDP),
]
LSOF_QUERIES = [
    (Protocol.TCP, ["lsof", "-iTCP", "-sTCP:LISTEN", "-P", "-n"]),
    (Protocol.UDP, ["lsof", "-iUDP", "-P", "-n"]),
]
NETSTAT_QUERIES = [
    (Protocol.TCP, ["netstat", "-ano", "-p", "TCP"]),
    (Protocol.TCP, ["netstat", "-ano", "-p", "TCPv6"]),
    (Protocol.UDP, ["netstat", "-ano", "-p", "UDP"]),
    (Protocol.UDP, ["netstat", "-ano", "-p", "UDPv6"]),
]


@dataclass(frozen=True)
class Strategy:
    """One self-contained way of producing a full scan."""

    name: str
    run: Callable[[], list[PortRecord]]


class Probe:
    """Base class for platform probes."""

    name = "base"
    windows = False

    def __init__(self, runner: Runner | None = None):
        self.runner: Runner = runner if runner is not None else ToolRunner()

    def strategies(self) -> list[Strategy]:
        """Return scan strategies, primary first."""
        raise NotImplementedError

    def terminate(self, pid: int) -> None:
        """Force-kill ``pid``. Raises ScanError on failure."""
        terminate(self.runner, pid, windows=self.windows)


class LinuxProbe(Probe):
    """ss first; the /proc/net tables when ss is unusable."""

    name = "linux"

    def __init__(self, runner: Runner | None = None, proc_root: Path = PROC_ROOT):
        super().__init__(runner)
        self.proc_root = proc_root

    def strategies(self) -> list[Strategy]:
        return [
            Strategy("ss", self.scan_with_ss),
            Strategy("proc", self.scan_with_proc),
        ]

    def scan_with_ss(self) -> list[PortRecord]:
        """One ss query per transport; either failing fails the strategy."""
        records: list[PortRecord] = []
        for protocol, argv in SS_QUERIES:
            output = check_output(self.runner, argv)
            for line in output.splitlines():
                record = parse_ss_line(line, protocol)
                if record is not None:
                    records.append(record)
        return records

    def scan_with_proc(self) -> list[PortRecord]:
        """Read the kernel socket tables and find owners by socket inode.

        Tables missing from this kernel (e.g. IPv6 disabled) are skipped.

        Raises:
            ScanError: If a table cannot be read, or none exist at all.
        """
        resolver = InodeResolver(self.proc_root)
        records: list[PortRecord] = []
        tables_read = 0

        for table, protocol in PROC_TABLES:
            path = self.proc_root / "net" / table
            try:
                content = path.read_text()
            except FileNotFoundError:
                log.debug("proc_table_missing", path=str(path))
                continue
            except OSError as e:
                raise ScanError.from_os_error(e) from e
            tables_read += 1

            # First row is the column header
            for line in content.splitlines()[1:]:
                record = parse_proc_net_line(line, protocol, resolver.resolve)
                if record is not None:
                    records.append(record)

        if tables_read == 0:
            raise ScanError(f"No socket tables found under {self.proc_root / 'net'}")
        return records


class MacProbe(Probe):
    """lsof, one pass per transport, deduplicated by port."""

    name = "macos"

    def strategies(self) -> list[Strategy]:
        return [Strategy("lsof", self.scan_with_lsof)]

    def _lsof(self, argv: list[str]) -> str:
        completed = self.runner(argv)
        if completed.returncode == 0:
            return completed.stdout or ""
        detail = diagnostic(completed)
        # lsof exits 1 without complaint when nothing matches the selection
        if completed.returncode == 1 and not detail:
            return ""
        message = f"{argv[0]} command failed"
        raise ScanError(f"{message}: {detail}" if detail else message)

    def scan_with_lsof(self) -> list[PortRecord]:
        """Scan TCP listeners then UDP sockets, keeping the first record per port.

        Result is ordered by port.
        """
        records: list[PortRecord] = []
        for protocol, argv in LSOF_QUERIES:
            output = self._lsof(argv)
            # First row is the column header
            for line in output.splitlines()[1:]:
                record = parse_lsof_line(line, protocol)
                if record is not None:
                    records.append(record)

        # lsof lists a socket once per process/fd holding it
        records.sort(key=lambda r: r.port)
        seen: set[int] = set()
        unique: list[PortRecord] = []
        for record in records:
            if record.port in seen:
                continue
            seen.add(record.port)
            unique.append(record)
        return unique


class WindowsProbe(Probe):
    """netstat for sockets, tasklist for process names."""

    name = "windows"
    windows = True

    def strategies(self) -> list[Strategy]:
        return [Strategy("netstat", self.scan_with_netstat)]

    def scan_with_netstat(self) -> list[PortRecord]:
        """Capture the process table, then one netstat pass per transport."""
        pid_names = tasklist_names(self.runner)
        records: list[PortRecord] = []
        for protocol, argv in NETSTAT_QUERIES:
            output = check_output(self.runner, argv)
            for line in output.splitlines():
                record = parse_netstat_line(line, protocol, pid_names)
                if record is not None:
                    records.append(record)
        return records


class UnsupportedProbe(Probe):
    """Any other host: every operation fails at once without running a tool."""

    name = "unsupported"

    def __init__(self, system: str = "", runner: Runner | None = None):
        super().__init__(runner)
        self.system = system

    def _fail(self) -> list[PortRecord]:
        raise ScanError(UNSUPPORTED_MESSAGE)

    def strategies(self) -> list[Strategy]:
        return [Strategy("unsupported", self._fail)]

    def terminate(self, pid: int) -> None:
        raise ScanError(UNSUPPORTED_MESSAGE)


def detect_probe(system: str | None = None, runner: Runner | None = None) -> Probe:
    """Pick the probe for this host (or for ``system``, a platform.system() value)."""
    if system is None:
        system = platform.system()

    if system == "Linux":
        probe: Probe = LinuxProbe(runner)
    elif system == "Darwin":
        probe = MacProbe(runner)
    elif system == "Windows":
        probe = WindowsProbe(runner)
    else:
        probe = UnsupportedProbe(system, runner)

    log.debug("probe_selected", system=system, probe=probe.name)
    return probe
