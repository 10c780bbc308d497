"""Settings for the scheduler, notifier and telemetry.

Values come from ``configs/settings.yaml`` (or ``HELMET_ESCALATION_SETTINGS_PATH``)
and are overridden by ``HELMET_ESCALATION_<SECTION>__<KEY>`` variables, which
may also be supplied through a ``.env`` file (``HELMET_ESCALATION_DOTENV``).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

_ENV_PREFIX = "HELMET_ESCALATION_"
_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _state_dir() -> Path:
    override = os.getenv("HELMET_ESCALATION_STATE_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".cache" / "helmet_escalation"


def _require_positive(value: float, field_name: str) -> float:
    if value <= 0:
        raise ValueError(f"{field_name} must be > 0")
    return value


class TelemetrySettings(BaseModel):
    """Where failed escalations and counters are exported."""

    sentry_dsn: Optional[str] = None
    environment: str = "development"
    release: Optional[str] = None
    enable_prometheus: bool = False
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("environment")
    @classmethod
    def _default_environment(cls, value: str) -> str:
        return value.strip() or "development"


class EscalationSettings(BaseModel):
    """Grace period and worker pool used by the escalation scheduler."""

    delay_seconds: float = 60.0
    max_workers: int = 4
    event_log_enabled: bool = False
    event_log_path: Optional[str] = None

    @field_validator("delay_seconds", "max_workers")
    @classmethod
    def _positive(cls, value, info):
        return _require_positive(value, info.field_name)

    @field_validator("event_log_path", mode="before")
    @classmethod
    def _expand_user(cls, value: Optional[str]) -> Optional[str]:
        return str(Path(value).expanduser()) if value else None

    @property
    def resolved_event_log_path(self) -> Path:
        if self.event_log_path:
            return Path(self.event_log_path)
        return _state_dir() / "escalation" / "events.jsonl"


class NotifierSettings(BaseModel):
    """Twilio credentials, call-instruction URL and retry policy."""

    driver: str = "twilio"
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    from_number: Optional[str] = None
    base_url: str = "http://localhost:8080"
    voice_path: str = "/voice/alert"
    default_country_code: str = "+91"
    api_base: str = "https://api.twilio.com"
    timeout: float = 10.0
    max_retries: int = 2
    retry_backoff_base: float = 0.5
    retry_backoff_max: float = 8.0
    retry_jitter: float = 0.5
    circuit_breaker_failures: int = 3
    circuit_breaker_recovery: float = 30.0
    circuit_breaker_window: float = 10.0

    @field_validator("driver")
    @classmethod
    def _lower_driver(cls, value: str) -> str:
        return value.strip().lower() or "twilio"

    @field_validator(
        "timeout",
        "circuit_breaker_failures",
        "circuit_breaker_recovery",
        "circuit_breaker_window",
    )
    @classmethod
    def _positive(cls, value, info):
        return _require_positive(value, info.field_name)

    @field_validator("max_retries", "retry_backoff_base", "retry_backoff_max", "retry_jitter")
    @classmethod
    def _not_negative(cls, value, info):
        if value < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return value

    @field_validator("default_country_code")
    @classmethod
    def _plus_prefix(cls, value: str) -> str:
        value = value.strip()
        return value if not value or value.startswith("+") else f"+{value}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def voice_url(self) -> str:
        """Absolute URL Twilio fetches call instructions from."""
        return f"{self.base_url.rstrip('/')}/{self.voice_path.lstrip('/')}"


class AppSettings(BaseModel):
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings YAML at {path} must contain a mapping")
    return data


def _settings_path(explicit: Optional[str | Path]) -> Path:
    candidate = explicit or os.getenv("HELMET_ESCALATION_SETTINGS_PATH")
    if candidate:
        return Path(candidate).expanduser()
    return _PROJECT_ROOT / "configs" / "settings.yaml"


def _dotenv_path() -> Optional[Path]:
    configured = os.getenv("HELMET_ESCALATION_DOTENV")
    if configured:
        return Path(configured).expanduser()
    local = _PROJECT_ROOT / ".env"
    return local if local.exists() else None


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Turn ``HELMET_ESCALATION_A__B=v`` variables into ``{"a": {"b": "v"}}``."""

    nested: Dict[str, Any] = {}
    for name, value in environ.items():
        if not name.startswith(_ENV_PREFIX):
            continue
        path = [part.lower() for part in name[len(_ENV_PREFIX) :].split("__")]
        # SETTINGS_PATH, DOTENV and STATE_DIR steer the loader, not the model.
        if len(path) < 2:
            continue
        *sections, leaf = path
        target = nested
        for section in sections:
            target = target.setdefault(section, {})
        target[leaf] = value
    return nested


def _merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


@lru_cache(maxsize=1)
def get_settings(path: Path | None = None) -> AppSettings:
    """Load settings once per process; call :func:`reset_settings_cache` to reload."""

    dotenv = _dotenv_path()
    if dotenv is not None:
        load_dotenv(dotenv_path=dotenv, override=False)
    raw = _load_yaml(_settings_path(path))
    return AppSettings.model_validate(_merge(raw, _env_overrides(os.environ)))


def reset_settings_cache() -> None:
    get_settings.cache_clear()


__all__ = [
    "AppSettings",
    "EscalationSettings",
    "NotifierSettings",
    "TelemetrySettings",
    "get_settings",
    "reset_settings_cache",
]
