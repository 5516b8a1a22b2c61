"""Scan coordinator: runs a probe's strategies and answers port queries."""

import structlog

from unbind.models import PortRecord, ScanError
from unbind.probes import Probe, detect_probe
from unbind.runner import ToolRunner

log = structlog.get_logger()


class Scanner:
    """Entry point for scanning, port lookup, and killing.

    Stateless between calls: every ``scan()`` queries the host afresh.
    """

    def __init__(self, probe: Probe):
        self.probe = probe

    @classmethod
    def for_host(cls, command_timeout: float | None = None) -> "Scanner":
        """Build a scanner for the platform we are running on."""
        runner = ToolRunner(timeout=command_timeout or None)
        return cls(detect_probe(runner=runner))

    def scan(self) -> list[PortRecord]:
        """Return every listening socket on the host.

        Strategies run in order. When one fails and another remains, its error
        is logged and dropped; the last strategy's result or error is final.

        Raises:
            ScanError: If the last strategy fails.
        """
        strategies = self.probe.strategies()
        for index, strategy in enumerate(strategies):
            is_last = index == len(strategies) - 1
            try:
                records = strategy.run()
            except ScanError as e:
                if is_last:
                    log.warning("scan_failed", probe=self.probe.name, strategy=strategy.name)
                    raise
                log.warning(
                    "strategy_fallback",
                    probe=self.probe.name,
                    strategy=strategy.name,
                    error=e.message,
                )
                continue
            log.info(
                "scan_complete",
                probe=self.probe.name,
                strategy=strategy.name,
                count=len(records),
            )
            return records

        raise ScanError(f"No scan strategy available for {self.probe.name}")

    def kill(self, pid: int) -> None:
        """Force-kill ``pid``. Raises ScanError with the kill tool's diagnostic."""
        self.probe.terminate(pid)

    def get_port_info(self, port: int) -> PortRecord | None:
        """Return the first record bound to ``port``, or None if nothing listens there.

        Raises:
            ScanError: If the scan itself fails. This is not the same as None.
        """
        for record in self.scan():
            if record.port == port:
                return record
        return None
