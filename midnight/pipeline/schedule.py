"""
Cron Schedule
=============
Five-field cron expressions evaluated in UTC.

    ┌ minute (0-59)
    │ ┌ hour (0-23)
    │ │ ┌ day of month (1-31)
    │ │ │ ┌ month (1-12)
    │ │ │ │ ┌ day of week (0-6, Sunday = 0 or 7)
    0 0 * * *

Supported syntax per field: ``*``, ``N``, ``A-B``, ``*/S``, ``A-B/S`` and
comma-separated lists of those. When both day-of-month and day-of-week are
restricted a day matches if EITHER matches (classic cron semantics).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import FrozenSet

_FIELD_RANGES = [
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
]

# Far enough to cover Feb 29 expressions
_SEARCH_DAYS = 366 * 8


def _parse_field(expr: str, name: str, low: int, high: int) -> FrozenSet[int]:
    values: set[int] = set()
    for part in expr.split(","):
        if not part:
            raise ValueError(f"Empty list element in {name} field '{expr}'")
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"Invalid step '{step_text}' in {name} field")
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            a, b = part.split("-", 1)
            if not (a.isdigit() and b.isdigit()):
                raise ValueError(f"Invalid range '{part}' in {name} field")
            start, end = int(a), int(b)
        elif part.isdigit():
            start = int(part)
            end = high if step > 1 else start
        else:
            raise ValueError(f"Invalid value '{part}' in {name} field")

        if start < low or end > high or start > end:
            raise ValueError(f"{name} value out of range {low}-{high}: '{part}'")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days_of_month: FrozenSet[int]
    months: FrozenSet[int]
    days_of_week: FrozenSet[int]
    dom_restricted: bool
    dow_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression needs 5 fields, got {len(fields)}: '{expression}'")

        parsed = [
            _parse_field(text, name, low, high)
            for text, (name, low, high) in zip(fields, _FIELD_RANGES)
        ]
        dow = frozenset(d % 7 for d in parsed[4])
        return cls(
            expression=expression,
            minutes=parsed[0],
            hours=parsed[1],
            days_of_month=parsed[2],
            months=parsed[3],
            days_of_week=dow,
            dom_restricted=fields[2] != "*",
            dow_restricted=fields[4] != "*",
        )

    # ------------------------------------------------------------------
    def _day_matches(self, day: datetime) -> bool:
        if day.month not in self.months:
            return False
        dom_ok = day.day in self.days_of_month
        # isoweekday: Monday=1..Sunday=7 → cron Sunday=0
        dow_ok = (day.isoweekday() % 7) in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def _times_of_day(self) -> list[tuple[int, int]]:
        return sorted((h, m) for h in self.hours for m in self.minutes)

    def matches(self, instant: datetime) -> bool:
        instant = _as_utc(instant)
        return (
            self._day_matches(instant)
            and instant.hour in self.hours
            and instant.minute in self.minutes
        )

    def next_after(self, after: datetime) -> datetime:
        """First fire instant strictly after ``after``."""
        start = _as_utc(after).replace(second=0, microsecond=0) + timedelta(minutes=1)
        times = self._times_of_day()
        day = start.replace(hour=0, minute=0)
        for _ in range(_SEARCH_DAYS):
            if self._day_matches(day):
                for hour, minute in times:
                    candidate = day.replace(hour=hour, minute=minute)
                    if candidate >= start:
                        return candidate
            day += timedelta(days=1)
        raise ValueError(f"Cron expression '{self.expression}' never fires")

    def previous_at_or_before(self, before: datetime) -> datetime:
        """Latest fire instant at or before ``before``."""
        end = _as_utc(before).replace(second=0, microsecond=0)
        times = list(reversed(self._times_of_day()))
        day = end.replace(hour=0, minute=0)
        for _ in range(_SEARCH_DAYS):
            if self._day_matches(day):
                for hour, minute in times:
                    candidate = day.replace(hour=hour, minute=minute)
                    if candidate <= end:
                        return candidate
            day -= timedelta(days=1)
        raise ValueError(f"Cron expression '{self.expression}' never fires")


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)
