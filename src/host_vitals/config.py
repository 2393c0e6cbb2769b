"""Configuration system for host-vitals."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Process list sizes accepted from settings
MIN_PROCESS_COUNT = 1
MAX_PROCESS_COUNT = 10


@dataclass
class SamplingConfig:
    """Sampler cadence configuration."""

    poll_interval: float = 1.0  # Seconds between CPU/network polls
    disk_poll_interval: float = 2.0  # Seconds between disk polls
    attribution_interval: float = 2.0  # Seconds between process attribution polls
    attribution_initial_delay: float = 1.0  # Delay before first attribution poll
    history_size: int = 60  # Points kept per metric history
    min_update_gap: float = 0.5  # Rate limiter: min seconds between primary polls


@dataclass
class ProcessesConfig:
    """Per-domain process list configuration."""

    cpu_count: int = 5
    network_count: int = 5
    disk_count: int = 5
    attribution_window: float = 15.0  # Seconds a process stays listed after last activity

    def limit(self, domain: str) -> int:
        """Return the top-N limit for a domain, clamped to the allowed range."""
        value = getattr(self, f"{domain}_count")
        return max(MIN_PROCESS_COUNT, min(MAX_PROCESS_COUNT, int(value)))


@dataclass
class ThresholdsConfig:
    """Warning thresholds (percent)."""

    cpu_warning: float = 90.0
    memory_warning: float = 90.0
    disk_warning: float = 90.0


@dataclass
class WatchdogConfig:
    """Health watchdog configuration."""

    check_interval: float = 30.0  # Also the staleness threshold
    restart_delay: float = 0.5


def _default_endpoints() -> list[str]:
    return [
        "https://api.ipify.org",
        "https://ipinfo.io/ip",
        "https://icanhazip.com",
    ]


@dataclass
class WanConfig:
    """WAN address lookup configuration."""

    endpoints: list[str] = field(default_factory=_default_endpoints)
    max_retries: int = 3
    backoff_base: float = 1.0  # Seconds; doubles on each retry
    request_timeout: float = 10.0  # Per-request timeout
    refresh_interval: float = 60.0


def _default_eject_command() -> list[str]:
    return ["/usr/sbin/diskutil", "eject"]


@dataclass
class CommandsConfig:
    """External diagnostic command timeouts (seconds)."""

    ps_timeout: float = 5.0
    nettop_timeout: float = 10.0
    ioreg_timeout: float = 5.0
    system_profiler_timeout: float = 10.0
    eject_timeout: float = 30.0
    eject_command: list[str] = field(default_factory=_default_eject_command)


@dataclass
class SystemConfig:
    """Daemon housekeeping configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep
    heartbeat_interval: float = 60.0  # Seconds between heartbeat log lines


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


def _load_section(cls: type, data: dict):
    """Build a section dataclass from TOML data, using defaults for missing keys."""
    defaults = cls()
    values = {}
    for f in fields(cls):
        value = data.get(f.name, getattr(defaults, f.name))
        # tomlkit containers unwrap to plain Python values
        if hasattr(value, "unwrap"):
            value = value.unwrap()
        values[f.name] = value
    return cls(**values)


SECTIONS = {
    "sampling": SamplingConfig,
    "processes": ProcessesConfig,
    "thresholds": ThresholdsConfig,
    "watchdog": WatchdogConfig,
    "wan": WanConfig,
    "commands": CommandsConfig,
    "system": SystemConfig,
}


@dataclass
class Config:
    """Main configuration container."""

    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    processes: ProcessesConfig = field(default_factory=ProcessesConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    watchdog: WatchdogConfig = field(default_factory=WatchdogConfig)
    wan: WanConfig = field(default_factory=WanConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "host-vitals"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "host-vitals"

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in SECTIONS:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or a value is out of range.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        config = cls(
            **{name: _load_section(section, data.get(name, {})) for name, section in SECTIONS.items()}
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ValueError: On the first out-of-range value.
        """
        s = self.sampling
        if s.poll_interval <= 0 or s.disk_poll_interval <= 0:
            raise ValueError(
                f"poll intervals must be > 0, got {s.poll_interval}/{s.disk_poll_interval}"
            )
        if s.attribution_interval <= 0:
            raise ValueError(f"attribution_interval must be > 0, got {s.attribution_interval}")
        if s.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {s.history_size}")
        if s.min_update_gap < 0:
            raise ValueError(f"min_update_gap must be >= 0, got {s.min_update_gap}")

        if self.processes.attribution_window <= 0:
            raise ValueError(
                f"attribution_window must be > 0, got {self.processes.attribution_window}"
            )

        for name in ("cpu_warning", "memory_warning", "disk_warning"):
            value = getattr(self.thresholds, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within 0-100, got {value}")

        if self.watchdog.check_interval <= 0:
            raise ValueError(f"check_interval must be > 0, got {self.watchdog.check_interval}")
        # Staleness threshold is the check interval; a sampler must poll faster than that
        slowest = max(s.poll_interval, s.disk_poll_interval)
        if slowest >= self.watchdog.check_interval:
            raise ValueError(
                f"poll intervals must be < watchdog check_interval "
                f"({self.watchdog.check_interval}), got {slowest}"
            )

        wan = self.wan
        if not wan.endpoints:
            raise ValueError("wan.endpoints must not be empty")
        if wan.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {wan.max_retries}")
        if wan.backoff_base < 0 or wan.request_timeout <= 0:
            raise ValueError("backoff_base must be >= 0 and request_timeout > 0")

        if not self.commands.eject_command:
            raise ValueError("commands.eject_command must not be empty")
