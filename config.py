"""Application settings loaded from ``config.json``."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict

import pytz
from tzlocal import get_localzone_name

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"


class ConfigError(ValueError):
    """Raised when ``config.json`` holds a value of the wrong shape."""


def _system_timezone() -> str:
    try:
        tz_name = get_localzone_name()
        pytz.timezone(tz_name)
        LOGGER.debug("Resolved system timezone: %s", tz_name)
        return tz_name
    except Exception:
        LOGGER.warning("Falling back to UTC for system timezone resolution")
        return "UTC"


@dataclass
class AppConfig:
    latitude: float = 30.983334
    longitude: float = 41.016666
    calculation_method: int = 4
    school: int = 0
    location_name: str = "Arar"
    cache_directory: Path = field(default_factory=lambda: APP_ROOT / "timings")
    timezone: str = field(default_factory=_system_timezone)
    pre_reminder_lead_time: float = 300.0
    arrival_grace: float = 60.0
    poll_interval: float = 1.0
    retry_interval: float = 60.0
    request_timeout: float = 10.0
    reminder_sound: Path = field(default_factory=lambda: APP_ROOT / "assets" / "tasbih.wav")
    adhan_sound: Path = field(default_factory=lambda: APP_ROOT / "assets" / "adhan.wav")
    log_level: str = "INFO"

    @property
    def lead_time(self) -> timedelta:
        return timedelta(seconds=self.pre_reminder_lead_time)

    @property
    def tzinfo(self) -> pytz.BaseTzInfo:
        return pytz.timezone(self.timezone)

    @classmethod
    def from_dict(cls, values: Dict[str, Any], base_dir: Path = APP_ROOT) -> "AppConfig":
        known = {item.name: item for item in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in values.items():
            if key not in known:
                LOGGER.warning("Ignoring unknown config key %r", key)
                continue
            kwargs[key] = _coerce(key, value, base_dir)
        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ConfigError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ConfigError(f"longitude out of range: {self.longitude}")
        for name in ("pre_reminder_lead_time", "arrival_grace", "retry_interval"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        for name in ("poll_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError as exc:
            raise ConfigError(f"Unknown timezone {self.timezone!r}") from exc
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"Unknown log level {self.log_level!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)
        return data


_FLOAT_KEYS = {
    "latitude",
    "longitude",
    "pre_reminder_lead_time",
    "arrival_grace",
    "poll_interval",
    "retry_interval",
    "request_timeout",
}
_INT_KEYS = {"calculation_method", "school"}
_PATH_KEYS = {"cache_directory", "reminder_sound", "adhan_sound"}


def _coerce(key: str, value: Any, base_dir: Path) -> Any:
    try:
        if key in _FLOAT_KEYS:
            if isinstance(value, bool):
                raise TypeError(value)
            return float(value)
        if key in _INT_KEYS:
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise TypeError(value)
            return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from exc
    if key in _PATH_KEYS:
        if not isinstance(value, str) or not value:
            raise ConfigError(f"Invalid path for {key}: {value!r}")
        path = Path(value).expanduser()
        return path if path.is_absolute() else base_dir / path
    if not isinstance(value, str):
        raise ConfigError(f"Invalid value for {key}: {value!r}")
    return value


def load_config(path: Path = CONFIG_PATH) -> AppConfig:
    if not path.exists():
        LOGGER.debug("No config at %s; using defaults", path)
        return AppConfig()
    with path.open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    LOGGER.debug("Loaded config keys: %s", list(payload.keys()))
    return AppConfig.from_dict(payload, base_dir=path.parent)


def save_config(config: AppConfig, path: Path = CONFIG_PATH) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(config.to_dict(), handle, indent=2)
