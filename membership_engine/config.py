"""Runtime configuration for the membership lifecycle engine."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class ScheduleConfig:
    """Cadences for the default production triggers."""

    daily_jobs: str = "0 2 * * *"
    expiry_check: str = "0 * * * *"
    auto_renew: str = "0 */6 * * *"
    analytics_update: str = "0 */4 * * *"


@dataclass(frozen=True)
class EngineConfig:
    """Settings shared by the lifecycle operations, scheduler and storage."""

    db: Dict[str, Any]
    reminder_window_days: int
    renewal_window_hours: int
    analytics_currency: str
    scheduler_enabled: bool
    scheduler_timezone: str
    schedules: ScheduleConfig
    manual_trigger_timeout_seconds: Optional[float]


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_engine_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Load :class:`EngineConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    db = {
        "host": env_mapping.get("DB_HOST", "127.0.0.1"),
        "port": _to_int(env_mapping.get("DB_PORT"), default=5432),
        "dbname": env_mapping.get("DB_NAME", "memberships_db"),
        "user": env_mapping.get("DB_USER", "membership_user"),
        "password": env_mapping.get("DB_PASSWORD", "membership_pass"),
        "connect_timeout": _parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    }

    reminder_window_days = _to_int(env_mapping.get("MEMBERSHIP_REMINDER_WINDOW_DAYS"), default=7)
    renewal_window_hours = _to_int(env_mapping.get("MEMBERSHIP_RENEWAL_WINDOW_HOURS"), default=24)
    if reminder_window_days < 0 or renewal_window_hours < 0:
        raise ValueError("Reminder and renewal windows must be non-negative")

    manual_timeout = _to_float(env_mapping.get("MANUAL_TRIGGER_TIMEOUT_SECONDS"), default=None)
    if manual_timeout is not None and manual_timeout <= 0:
        manual_timeout = None

    defaults = ScheduleConfig()
    schedules = ScheduleConfig(
        daily_jobs=env_mapping.get("SCHEDULE_DAILY_JOBS") or defaults.daily_jobs,
        expiry_check=env_mapping.get("SCHEDULE_EXPIRY_CHECK") or defaults.expiry_check,
        auto_renew=env_mapping.get("SCHEDULE_AUTO_RENEW") or defaults.auto_renew,
        analytics_update=env_mapping.get("SCHEDULE_ANALYTICS_UPDATE") or defaults.analytics_update,
    )

    return EngineConfig(
        db=db,
        reminder_window_days=reminder_window_days,
        renewal_window_hours=renewal_window_hours,
        analytics_currency=(env_mapping.get("ANALYTICS_CURRENCY") or "USDC").strip().upper(),
        scheduler_enabled=_to_bool(env_mapping.get("SCHEDULER_ENABLED"), default=True),
        scheduler_timezone=(env_mapping.get("SCHEDULER_TIMEZONE") or "UTC").strip(),
        schedules=schedules,
        manual_trigger_timeout_seconds=manual_timeout,
    )


__all__ = ["EngineConfig", "ScheduleConfig", "load_engine_config"]
