"""Configuration system for power-scope."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_PROBE_METHODS = ("psutil", "ps", "none")
VALID_LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class HistoryConfig:
    """Depth of the in-memory history buffers."""

    scalar_samples: int = 120  # Power, interrupts, throughput, memory
    process_samples: int = 10  # Per-PID and per-coalition CPU/memory
    per_cpu_samples: int = 30  # Per-CPU interrupts and per-core frequency


@dataclass
class ExitsConfig:
    """Recently-exited ledger configuration."""

    retention_seconds: float = 300.0  # Drop ledger entries older than this


@dataclass
class LivenessConfig:
    """How missing PIDs are checked before being declared exited.

    Methods:
    - psutil: in-process check, AccessDenied counts as alive
    - ps: run `ps -p <pid>`, any failure counts as dead
    - none: skip probing, every missing PID is dead
    """

    method: str = "psutil"
    timeout: float = 1.0  # Seconds before an unfinished probe counts as dead
    max_workers: int = 8  # Probes in flight at once


@dataclass
class LoggingConfig:
    """Structured log file configuration."""

    level: str = "info"
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


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

    history: HistoryConfig = field(default_factory=HistoryConfig)
    exits: ExitsConfig = field(default_factory=ExitsConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "power-scope"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs and other expendable persistent state."""
        return Path.home() / ".local" / "state" / "power-scope"

    @property
    def log_path(self) -> Path:
        """Parser log path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "parser.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("history", "exits", "liveness", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree when no file exists.
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

        return cls(
            history=_load_history_config(data.get("history", {})),
            exits=_load_exits_config(data.get("exits", {})),
            liveness=_load_liveness_config(data.get("liveness", {})),
            logging=_load_logging_config(data.get("logging", {})),
        )


def _load_history_config(data: dict) -> HistoryConfig:
    """Load history config, rejecting non-positive depths."""
    d = HistoryConfig()
    config = HistoryConfig(
        scalar_samples=data.get("scalar_samples", d.scalar_samples),
        process_samples=data.get("process_samples", d.process_samples),
        per_cpu_samples=data.get("per_cpu_samples", d.per_cpu_samples),
    )
    for f in fields(config):
        value = getattr(config, f.name)
        if value < 1:
            raise ValueError(f"{f.name} must be >= 1, got {value}")
    return config


def _load_exits_config(data: dict) -> ExitsConfig:
    d = ExitsConfig()
    retention = data.get("retention_seconds", d.retention_seconds)
    if retention < 0:
        raise ValueError(f"retention_seconds must be >= 0, got {retention}")
    return ExitsConfig(retention_seconds=retention)


def _load_liveness_config(data: dict) -> LivenessConfig:
    d = LivenessConfig()
    method = data.get("method", d.method)
    timeout = data.get("timeout", d.timeout)
    max_workers = data.get("max_workers", d.max_workers)

    if method not in VALID_PROBE_METHODS:
        raise ValueError(
            f"Invalid liveness method: {method!r}. Must be one of {VALID_PROBE_METHODS}"
        )
    if timeout <= 0:
        raise ValueError(f"timeout must be > 0, got {timeout}")
    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    return LivenessConfig(method=method, timeout=timeout, max_workers=max_workers)


def _load_logging_config(data: dict) -> LoggingConfig:
    d = LoggingConfig()
    level = data.get("level", d.level)
    max_bytes = data.get("log_max_bytes", d.log_max_bytes)
    backup_count = data.get("log_backup_count", d.log_backup_count)

    if str(level).lower() not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level!r}. Must be one of {VALID_LOG_LEVELS}")
    if max_bytes < 1:
        raise ValueError(f"log_max_bytes must be >= 1, got {max_bytes}")
    if backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {backup_count}")

    return LoggingConfig(level=level, log_max_bytes=max_bytes, log_backup_count=backup_count)
