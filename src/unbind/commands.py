"""Command envelope: the three operations as ``{success, data, error}`` responses."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from unbind.models import PortRecord, ScanError
from unbind.scanner import Scanner

T = TypeVar("T")


@dataclass
class CommandResponse(Generic[T]):
    """Uniform result of a command. ``error`` is set exactly when ``success`` is False."""

    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: T) -> "CommandResponse[T]":
        return cls(success=True, data=data, error=None)

    @classmethod
    def err(cls, message: str) -> "CommandResponse[T]":
        return cls(success=False, data=None, error=message)

    def to_dict(self) -> dict:
        """JSON-ready form; PortRecord payloads become dicts."""
        data: object = self.data
        if isinstance(data, PortRecord):
            data = data.to_dict()
        elif isinstance(data, list):
            data = [item.to_dict() if isinstance(item, PortRecord) else item for item in data]
        return {"success": self.success, "data": data, "error": self.error}


def scan_ports(scanner: Scanner | None = None) -> CommandResponse[list[PortRecord]]:
    """Scan all listening ports."""
    scanner = scanner or Scanner.for_host()
    try:
        return CommandResponse.ok(scanner.scan())
    except ScanError as e:
        return CommandResponse.err(e.message)


def kill_process(pid: int, scanner: Scanner | None = None) -> CommandResponse[None]:
    """Kill a process by PID."""
    scanner = scanner or Scanner.for_host()
    try:
        scanner.kill(pid)
    except ScanError as e:
        return CommandResponse.err(e.message)
    return CommandResponse.ok(None)


def get_port_info(port: int, scanner: Scanner | None = None) -> CommandResponse[PortRecord | None]:
    """Look up the listener on one port. Found-nothing is a success with no data."""
    scanner = scanner or Scanner.for_host()
    try:
        return CommandResponse.ok(scanner.get_port_info(port))
    except ScanError as e:
        return CommandResponse.err(e.message)
