"""Port record and error types shared by every scanner layer."""

from dataclasses import dataclass
from enum import Enum

UNKNOWN_PROCESS = "unknown"
LISTEN_STATE = "LISTEN"


class Protocol(str, Enum):
    """Transport a listening socket is bound on."""

    TCP = "tcp"
    UDP = "udp"


@dataclass(frozen=True)
class PortRecord:
    """One listening socket and the process that owns it.

    Records are built fresh on every scan. ``port`` 0 means unbound/unknown and
    ``pid`` 0 means no attributable process; neither is filtered out.
    """

    port: int
    pid: int
    process_name: str
    protocol: Protocol
    local_address: str
    state: str = LISTEN_STATE

    def to_dict(self) -> dict:
        """Return the wire form of this record."""
        return {
            "port": self.port,
            "pid": self.pid,
            "process_name": self.process_name,
            "protocol": self.protocol.value,
            "local_address": self.local_address,
            "state": self.state,
        }


class ScanError(Exception):
    """A scan or kill failed. Carries one human-readable message and nothing else."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @classmethod
    def from_os_error(cls, err: OSError) -> "ScanError":
        """Build from an I/O failure (missing tool, permission denied, ...)."""
        return cls(str(err))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScanError):
            return NotImplemented
        return self.message == other.message

    def __hash__(self) -> int:
        return hash(self.message)
