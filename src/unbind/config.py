"""Configuration system for unbind."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

import tomlkit

if TYPE_CHECKING:
    from unbind.models import PortRecord

VALID_PROTOCOLS = ("tcp", "udp")


@dataclass
class FilterConfig:
    """Which scan results are shown by default.

    A bound of 0 means unbounded. ``process_name`` is a case-insensitive
    substring; empty matches everything.
    """

    min_port: int = 0
    max_port: int = 0
    process_name: str = ""
    protocols: list[str] = field(default_factory=lambda: list(VALID_PROTOCOLS))

    def matches(self, record: "PortRecord") -> bool:
        """Return True if ``record`` passes every active criterion."""
        if self.min_port and record.port < self.min_port:
            return False
        if self.max_port and record.port > self.max_port:
            return False
        if self.process_name and self.process_name.lower() not in record.process_name.lower():
            return False
        return record.protocol.value in self.protocols


def apply_filter(records: Iterable["PortRecord"], filt: FilterConfig) -> list["PortRecord"]:
    """Return the records that pass ``filt``, in their original order."""
    return [r for r in records if filt.matches(r)]


@dataclass
class ScanConfig:
    """External query configuration."""

    command_timeout: float = 0.0  # Seconds per tool invocation, 0 = wait forever


@dataclass
class HistoryConfig:
    """Kill history retention."""

    max_entries: int = 50  # Oldest entries beyond this are dropped on insert


@dataclass
class SystemConfig:
    """Log file configuration."""

    log_max_bytes: int = 1024 * 1024  # Max log file size (1MB)
    log_backup_count: int = 2  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    filter: FilterConfig = field(default_factory=FilterConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "unbind"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def data_dir(self) -> Path:
        """Data directory (favorites and kill history)."""
        return Path.home() / ".local" / "share" / "unbind"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "unbind"

    @property
    def db_path(self) -> Path:
        """Database path."""
        return self.data_dir / "unbind.db"

    @property
    def log_path(self) -> Path:
        """Log file path."""
        return self.state_dir / "unbind.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["filter", "scan", "history", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file is not valid TOML or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        scan_data = data.get("scan", {})
        history_data = data.get("history", {})
        system_data = data.get("system", {})

        scan = ScanConfig(
            command_timeout=scan_data.get("command_timeout", defaults.scan.command_timeout),
        )
        if scan.command_timeout < 0:
            raise ValueError(f"command_timeout must be >= 0, got {scan.command_timeout}")

        history = HistoryConfig(
            max_entries=history_data.get("max_entries", defaults.history.max_entries),
        )
        if history.max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {history.max_entries}")

        return cls(
            filter=_load_filter_config(data.get("filter", {})),
            scan=scan,
            history=history,
            system=SystemConfig(
                log_max_bytes=system_data.get("log_max_bytes", defaults.system.log_max_bytes),
                log_backup_count=system_data.get(
                    "log_backup_count", defaults.system.log_backup_count
                ),
            ),
        )


def _load_filter_config(data: dict) -> FilterConfig:
    """Load filter config from TOML data, validating ports and protocols."""
    defaults = FilterConfig()

    min_port = data.get("min_port", defaults.min_port)
    max_port = data.get("max_port", defaults.max_port)
    for name, value in (("min_port", min_port), ("max_port", max_port)):
        if not 0 <= value <= 65535:
            raise ValueError(f"{name} must be between 0 and 65535, got {value}")
    if min_port and max_port and min_port > max_port:
        raise ValueError(f"min_port ({min_port}) is greater than max_port ({max_port})")

    protocols = [p.lower() for p in data.get("protocols", defaults.protocols)]
    for proto in protocols:
        if proto not in VALID_PROTOCOLS:
            raise ValueError(f"Invalid protocol: {proto!r}. Must be one of {VALID_PROTOCOLS}")

    return FilterConfig(
        min_port=min_port,
        max_port=max_port,
        process_name=data.get("process_name", defaults.process_name),
        protocols=protocols,
    )
