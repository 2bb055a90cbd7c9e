"""Centralized configuration loading for the autopilot draft engine."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


class ConfigError(ValueError):
    """Raised when required configuration is missing or invalid."""


VALID_SWEEP_DAYS = {"mon", "tue", "wed", "thu", "fri", "sat", "sun"}

DEFAULT_GENERATION_MODEL = "openai/gpt-4o-mini"
DEFAULT_VISIBILITY_MODEL = "perplexity/sonar"


@dataclass(frozen=True)
class AppConfig:
    """Typed application configuration loaded from environment variables."""

    openrouter_api_key: str | None
    generation_model: str
    visibility_model: str
    timezone: str
    sweep_day: str
    sweep_hour: int
    draft_store_db_path: Path
    failure_log_dir: Path
    trigger_drop_dir: Path
    pending_draft_cap: int = 5
    outbound_call_delay_ms: int = 500
    outbound_timeout_seconds: float = 45.0
    max_generation_attempts: int = 1
    recheck_delay_days: int = 14
    occasion_grace_days: int = 7
    maintenance_interval_hours: int = 24
    autopilot_plans: tuple[str, ...] = ("growth", "agency")

    @property
    def has_generation_credential(self) -> bool:
        return bool(self.openrouter_api_key)


_REQUIRED_ENV_VARS = (
    "DRAFT_STORE_DB_PATH",
    "FAILURE_LOG_DIR",
    "TRIGGER_DROP_DIR",
    "TIMEZONE",
    "SWEEP_DAY",
    "SWEEP_HOUR",
)


def _get_required_env(name: str) -> str:
    import os

    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        raise ConfigError(f"Missing required environment variable: {name}")
    return raw.strip()


def _get_optional_env(name: str) -> str | None:
    import os

    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _parse_int(name: str, raw: str, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer value for {name}: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got {value}")
    return value


def _parse_float(name: str, raw: str, minimum: float | None = None) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid number value for {name}: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _parse_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    values = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return tuple(values)


def _optional_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = _get_optional_env(name)
    if raw is None:
        return default
    return _parse_int(name, raw, minimum=minimum)


def _validate_required_envs() -> None:
    for name in _REQUIRED_ENV_VARS:
        _get_required_env(name)


@lru_cache(maxsize=1)
def get_config(load_dotenv_file: bool = True) -> AppConfig:
    """Load and cache app configuration."""
    if load_dotenv_file:
        load_dotenv()

    _validate_required_envs()

    sweep_day = _get_required_env("SWEEP_DAY").lower()
    if sweep_day not in VALID_SWEEP_DAYS:
        raise ConfigError(
            f"Invalid SWEEP_DAY: {sweep_day!r}. Expected one of {sorted(VALID_SWEEP_DAYS)}"
        )

    sweep_hour = _parse_int(
        "SWEEP_HOUR",
        _get_required_env("SWEEP_HOUR"),
        minimum=0,
        maximum=23,
    )

    timeout_raw = _get_optional_env("OUTBOUND_TIMEOUT_SECONDS")
    outbound_timeout_seconds = (
        _parse_float("OUTBOUND_TIMEOUT_SECONDS", timeout_raw, minimum=1.0)
        if timeout_raw
        else 45.0
    )

    autopilot_plans = _parse_csv(_get_optional_env("AUTOPILOT_PLANS")) or ("growth", "agency")

    return AppConfig(
        openrouter_api_key=_get_optional_env("OPENROUTER_API_KEY"),
        generation_model=_get_optional_env("GENERATION_MODEL") or DEFAULT_GENERATION_MODEL,
        visibility_model=_get_optional_env("VISIBILITY_MODEL") or DEFAULT_VISIBILITY_MODEL,
        timezone=_get_required_env("TIMEZONE"),
        sweep_day=sweep_day,
        sweep_hour=sweep_hour,
        draft_store_db_path=Path(_get_required_env("DRAFT_STORE_DB_PATH")),
        failure_log_dir=Path(_get_required_env("FAILURE_LOG_DIR")),
        trigger_drop_dir=Path(_get_required_env("TRIGGER_DROP_DIR")),
        pending_draft_cap=_optional_int("PENDING_DRAFT_CAP", 5, minimum=1),
        outbound_call_delay_ms=_optional_int("OUTBOUND_CALL_DELAY_MS", 500, minimum=0),
        outbound_timeout_seconds=outbound_timeout_seconds,
        max_generation_attempts=_optional_int("MAX_GENERATION_ATTEMPTS", 1, minimum=1),
        recheck_delay_days=_optional_int("RECHECK_DELAY_DAYS", 14, minimum=0),
        occasion_grace_days=_optional_int("OCCASION_GRACE_DAYS", 7, minimum=0),
        maintenance_interval_hours=_optional_int("MAINTENANCE_INTERVAL_HOURS", 24, minimum=1),
        autopilot_plans=autopilot_plans,
    )


def reset_config_cache() -> None:
    """Clear memoized configuration for tests and process reloads."""
    get_config.cache_clear()
