"""Daemon group configuration using dataclasses + TOML + environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import IO, Any, Union

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from daemonspawn.utils.system import resolve_signal, signal_name

ENV_PREFIX = "DAEMONSPAWN_"
INSTANCE_ENV = "DAEMONSPAWN_INSTANCE"
TOML_SECTION = "daemon"

DEFAULT_KILL_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_LOG_MODE = 0o666

LogTarget = Union[str, Path, IO[Any], None]


class ConfigError(ValueError):
    """Raised for configuration values that can never work."""


@dataclass(frozen=True)
class DaemonConfig:
    """Immutable configuration shared by every instance of a daemon group."""

    name: str
    pid_file: str
    working_dir: str = "/"
    processes: int = 1
    log_file: LogTarget = None
    sync_log: bool = False
    stop_signal: str = "TERM"
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_level: str = "INFO"
    log_mode: int = DEFAULT_LOG_MODE
    poll_interval: float = field(default=DEFAULT_POLL_INTERVAL, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Daemon name must not be empty")
        if not self.pid_file:
            raise ConfigError("pid_file must not be empty")
        if self.processes < 1:
            raise ConfigError(f"processes must be at least 1, got {self.processes}")
        if self.kill_timeout < 0:
            raise ConfigError(f"kill_timeout must not be negative, got {self.kill_timeout}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        try:
            resolve_signal(self.stop_signal)
        except ValueError as e:
            raise ConfigError(str(e)) from e

    @property
    def stop_signum(self) -> int:
        return resolve_signal(self.stop_signal)

    @property
    def log_path(self) -> Path | None:
        """The log target as a path, or None when it is a stream (or unset)."""
        if isinstance(self.log_file, (str, Path)):
            return Path(self.log_file).expanduser()
        return None

    def pid_path(self, index: int) -> Path:
        """Pidfile path for one instance index."""
        template = str(Path(self.pid_file).expanduser())
        if "{index}" in template:
            return Path(template.format(index=index))
        path = Path(template)
        if self.processes == 1 and index == 0:
            return path
        return path.with_name(f"{path.stem}_{index}{path.suffix}")

    def pid_glob(self) -> tuple[Path, str]:
        """Directory and glob pattern matching every indexed pidfile of the group."""
        template = str(Path(self.pid_file).expanduser())
        if "{index}" in template:
            path = Path(template)
            return path.parent, path.name.replace("{index}", "*")
        path = Path(template)
        return path.parent, f"{path.stem}_*{path.suffix}"

    def resolved_working_dir(self) -> Path:
        """Absolute working directory; ConfigError unless it is an existing directory."""
        path = Path(self.working_dir).expanduser().resolve()
        if not path.is_dir():
            reason = "Not a directory" if path.exists() else "Directory not found"
            raise ConfigError(f"{reason}: {path}")
        return path

    def index_from_path(self, path: Path) -> int | None:
        """Recover the instance index encoded in a pidfile name, if any."""
        _, pattern = self.pid_glob()
        prefix, _, suffix = pattern.partition("*")
        name = path.name
        if not (name.startswith(prefix) and name.endswith(suffix)):
            return None
        middle = name[len(prefix) : len(name) - len(suffix)]
        return int(middle) if middle.isdigit() else None

    def to_dict(self) -> dict[str, Any]:
        """Serializable view; stream log targets are omitted."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["stop_signal"] = signal_name(self.stop_signum)
        log_path = self.log_path
        if log_path is None:
            data.pop("log_file")
        else:
            data["log_file"] = str(log_path)
        return data


_COERCE: dict[str, type] = {
    "name": str,
    "pid_file": str,
    "working_dir": str,
    "processes": int,
    "log_file": str,
    "sync_log": bool,
    "stop_signal": str,
    "kill_timeout": float,
    "log_level": str,
    "log_mode": int,
    "poll_interval": float,
}


def _coerce(key: str, value: Any) -> Any:
    kind = _COERCE[key]
    if kind is bool and isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    if kind is int and key == "log_mode" and isinstance(value, str):
        return int(value, 8)
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e


def load_config(base: DaemonConfig, path: str | Path | None = None) -> DaemonConfig:
    """Overlay a TOML file and environment variables onto a caller-built config."""
    overrides: dict[str, Any] = {}

    if path is not None:
        config_file = Path(path).expanduser()
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
        section = data.get(TOML_SECTION, {})
        for key, value in section.items():
            if key not in _COERCE:
                raise ConfigError(f"Unknown config key: {TOML_SECTION}.{key}")
            overrides[key] = _coerce(key, value)

    # Environment variable overrides
    for key in _COERCE:
        if key == "name":
            continue
        if env_value := os.environ.get(ENV_PREFIX + key.upper()):
            overrides[key] = _coerce(key, env_value)

    if not overrides:
        return base
    return replace(base, **overrides)


def save_config(config: DaemonConfig, path: str | Path) -> None:
    """Save configuration to a TOML file."""
    config_file = Path(path).expanduser()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "wb") as f:
        tomli_w.dump({TOML_SECTION: config.to_dict()}, f)
