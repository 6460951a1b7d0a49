"""Scan settings: built-in defaults, an optional JSON file, then LANSCOUT_* env vars."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "LANSCOUT_"
DEFAULT_DB_PATH = Path.home() / ".lanscout" / "lanscout.db"


class LanScoutError(Exception):
    """Base class for errors raised by this package."""


class ConfigError(LanScoutError):
    """Invalid configuration value or unreadable configuration file."""


@dataclass(slots=True)
class ScanSettings:
    subnet: str | None = None
    port_set: str = "standard"
    liveness_timeout: float = 1.0
    port_timeout: float = 0.5
    port_delay: float = 0.01
    host_workers: int = 1
    ping_workers: int = 1
    max_hosts: int | None = None
    grab_banners: bool = False
    query_ai_models: bool = False
    rogue_window_seconds: float = 3600.0
    db_path: str = str(DEFAULT_DB_PATH)
    watchdog_warning_seconds: float = 30.0
    watchdog_kill_seconds: float = 60.0
    alert_threshold: str = "medium"
    authorized_dhcp_servers: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    log_file: str | None = None

    def validate(self) -> ScanSettings:
        for name in ("liveness_timeout", "port_timeout", "watchdog_warning_seconds", "watchdog_kill_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if self.port_delay < 0:
            raise ConfigError(f"port_delay must not be negative, got {self.port_delay!r}")
        if self.host_workers < 1 or self.ping_workers < 1:
            raise ConfigError("worker counts must be at least 1")
        if self.max_hosts is not None and self.max_hosts < 1:
            raise ConfigError(f"max_hosts must be at least 1, got {self.max_hosts!r}")
        if self.watchdog_kill_seconds < self.watchdog_warning_seconds:
            raise ConfigError("watchdog_kill_seconds must not be shorter than watchdog_warning_seconds")
        if self.rogue_window_seconds < 0:
            raise ConfigError("rogue_window_seconds must not be negative")
        if self.alert_threshold.lower() not in {"info", "low", "medium", "high", "critical"}:
            raise ConfigError(f"unknown alert_threshold: {self.alert_threshold!r}")
        return self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Convert a raw file/env value to the type of the field's default."""
    if raw is None:
        return None
    try:
        if isinstance(default, bool):
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(raw)
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        if isinstance(default, list):
            if isinstance(raw, str):
                return [item.strip() for item in raw.split(",") if item.strip()]
            return [str(item) for item in raw]
        if name == "max_hosts":
            return None if str(raw).strip() == "" else int(raw)
        return str(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid value for {name}: {raw!r}") from None


def _apply(settings: ScanSettings, values: Mapping[str, Any], source: str) -> None:
    defaults = ScanSettings()
    known = {item.name for item in fields(ScanSettings)}
    for key, raw in values.items():
        name = key.lower()
        if name not in known:
            logger.warning("Ignoring unknown setting %r from %s", key, source)
            continue
        setattr(settings, name, _coerce(name, raw, getattr(defaults, name)))


def _read_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    section = payload.get("lanscout", payload)
    if not isinstance(section, dict):
        raise ConfigError(f"'lanscout' section of {path} must be an object")
    return section


def load_settings(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ScanSettings:
    """Merge defaults, the JSON file, environment variables and explicit overrides."""
    settings = ScanSettings()
    if path is not None:
        _apply(settings, _read_file(Path(path).expanduser()), str(path))

    environ = os.environ if env is None else env
    from_env = {key[len(ENV_PREFIX):]: value for key, value in environ.items() if key.startswith(ENV_PREFIX)}
    from_env.pop("CONFIG", None)
    if from_env:
        _apply(settings, from_env, "environment")

    if overrides:
        _apply(settings, {key: value for key, value in overrides.items() if value is not None}, "overrides")
    return settings.validate()
