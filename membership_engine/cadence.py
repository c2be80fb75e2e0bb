"""Trigger cadences: fixed intervals and five-field cron expressions."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_MACROS = {
    "@hourly": "0 * * * *",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@weekly": "0 0 * * 0",
    "@monthly": "0 0 1 * *",
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
}

# (name, minimum, maximum) for each cron field in order.
_FIELDS: Tuple[Tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)

# Iteration cap before an expression is treated as never firing.
_MAX_SEARCH_STEPS = 8 * 366 * 24 * 2


class InvalidCadenceError(ValueError):
    """Raised when a cadence or its timezone cannot be parsed."""


class Cadence:
    """Computes the next fire time strictly after a given moment."""

    timezone_name = "UTC"

    def next_after(self, moment: datetime) -> datetime:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class IntervalCadence(Cadence):
    interval: timedelta
    timezone_name: str = "UTC"

    def __post_init__(self) -> None:
        if self.interval.total_seconds() <= 0:
            raise InvalidCadenceError("Interval cadence must be positive")

    def next_after(self, moment: datetime) -> datetime:
        try:
            return moment + self.interval
        except OverflowError as exc:
            raise InvalidCadenceError(f"Interval {self.describe()} overflows the calendar") from exc

    def describe(self) -> str:
        return f"every {int(self.interval.total_seconds())}s"


def _parse_value(raw: str, name: str, low: int, high: int) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidCadenceError(f"Invalid {name} value {raw!r}") from exc
    if value < low or value > high:
        raise InvalidCadenceError(f"{name} value {value} outside {low}-{high}")
    return value


def _parse_field(raw: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values = set()
    for part in raw.split(","):
        if not part:
            raise InvalidCadenceError(f"Empty entry in {name} field")
        base, _, step_raw = part.partition("/")
        step = 1
        if step_raw:
            try:
                step = int(step_raw)
            except ValueError as exc:
                raise InvalidCadenceError(f"Invalid step {step_raw!r} in {name} field") from exc
            if step < 1:
                raise InvalidCadenceError(f"Step must be positive in {name} field")

        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_raw, end_raw = base.split("-", 1)
            start = _parse_value(start_raw, name, low, high)
            end = _parse_value(end_raw, name, low, high)
            if start > end:
                raise InvalidCadenceError(f"Descending range {base!r} in {name} field")
        else:
            start = _parse_value(base, name, low, high)
            end = high if step_raw else start
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronCadence(Cadence):
    """Standard cron semantics evaluated in an IANA timezone.

    When both day-of-month and day-of-week are restricted a day matches if
    either does.
    """

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool
    timezone_name: str = "UTC"

    @classmethod
    def parse(cls, expression: str, timezone_name: str = "UTC") -> "CronCadence":
        source = expression.strip()
        fields = _MACROS.get(source.lower(), source).split()
        if len(fields) != len(_FIELDS):
            raise InvalidCadenceError(f"Cron expression must have 5 fields: {expression!r}")
        _zone(timezone_name)

        parsed = [_parse_field(raw, name, low, high) for raw, (name, low, high) in zip(fields, _FIELDS)]
        # Sunday may be written as 0 or 7.
        weekdays = frozenset(0 if value == 7 else value for value in parsed[4])
        return cls(
            expression=source,
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=weekdays,
            day_restricted=fields[2] != "*",
            weekday_restricted=fields[4] != "*",
            timezone_name=timezone_name,
        )

    def _day_matches(self, candidate: datetime) -> bool:
        cron_weekday = (candidate.weekday() + 1) % 7
        day_ok = candidate.day in self.days
        weekday_ok = cron_weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def next_after(self, moment: datetime) -> datetime:
        zone = _zone(self.timezone_name)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(zone).replace(tzinfo=None, second=0, microsecond=0) + timedelta(minutes=1)

        for _ in range(_MAX_SEARCH_STEPS):
            if local.month not in self.months:
                year = local.year + (1 if local.month == 12 else 0)
                month = 1 if local.month == 12 else local.month + 1
                local = datetime(year, month, 1)
                continue
            if not self._day_matches(local):
                local = local.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if local.hour not in self.hours:
                local = local.replace(minute=0) + timedelta(hours=1)
                continue
            if local.minute not in self.minutes:
                local += timedelta(minutes=1)
                continue

            result = local.replace(tzinfo=zone).astimezone(timezone.utc)
            if result > moment:
                return result
            local += timedelta(minutes=1)

        raise InvalidCadenceError(f"Cron expression never fires: {self.expression!r}")

    def describe(self) -> str:
        return self.expression


def _zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidCadenceError(f"Unknown timezone {timezone_name!r}") from exc


def parse_cadence(
    value: Union[str, int, float, timedelta, Cadence],
    timezone_name: str = "UTC",
) -> Cadence:
    """Build a :class:`Cadence` from a cron string, seconds or a ``timedelta``."""

    if isinstance(value, Cadence):
        return value
    if isinstance(value, bool):
        raise InvalidCadenceError("Boolean is not a cadence")
    if isinstance(value, timedelta):
        _zone(timezone_name)
        return IntervalCadence(value, timezone_name)
    if isinstance(value, (int, float)):
        _zone(timezone_name)
        if not math.isfinite(value):
            raise InvalidCadenceError(f"Interval must be finite: {value!r}")
        try:
            interval = timedelta(seconds=value)
        except (OverflowError, ValueError) as exc:
            raise InvalidCadenceError(f"Interval out of range: {value!r}") from exc
        return IntervalCadence(interval, timezone_name)
    if isinstance(value, str):
        return CronCadence.parse(value, timezone_name)
    raise InvalidCadenceError(f"Unsupported cadence {value!r}")


__all__ = [
    "Cadence",
    "CronCadence",
    "IntervalCadence",
    "InvalidCadenceError",
    "parse_cadence",
]
