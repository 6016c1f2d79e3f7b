# cron.py
# Five-field cron expressions: minute hour day-of-month month day-of-week.
# Timestamps are compared in UTC at minute resolution.
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import FrozenSet, Tuple


MONTH_NAMES = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}
DAY_NAMES = {"SUN": 0, "MON": 1, "TUE": 2, "WED": 3, "THU": 4, "FRI": 5, "SAT": 6}

# (field name, min, max, names)
_FIELDS: Tuple[Tuple[str, int, int, dict], ...] = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day of month", 1, 31, {}),
    ("month", 1, 12, MONTH_NAMES),
    ("day of week", 0, 7, DAY_NAMES),
)


class CronError(ValueError):
    """Raised for an invalid cron expression."""


@dataclass(frozen=True)
class CronExpression:
    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]  # 0 = Sunday
    days_restricted: bool
    weekdays_restricted: bool

    def matches(self, ts: datetime) -> bool:
        ts = _as_utc(ts)
        if ts.minute not in self.minutes or ts.hour not in self.hours:
            return False
        if ts.month not in self.months:
            return False

        cron_weekday = (ts.weekday() + 1) % 7  # python: Monday=0, cron: Sunday=0
        day_ok = ts.day in self.days
        weekday_ok = cron_weekday in self.weekdays

        # Classic cron: if both day fields are restricted, either may match.
        if self.days_restricted and self.weekdays_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _value(token: str, lo: int, hi: int, names: dict, field_name: str) -> int:
    upper = token.upper()
    if upper in names:
        return names[upper]
    if not token.isdigit():
        raise CronError(f"invalid {field_name} value {token!r}")
    v = int(token)
    if v < lo or v > hi:
        raise CronError(f"{field_name} value {v} out of range {lo}-{hi}")
    return v


def _parse_field(text: str, lo: int, hi: int, names: dict, field_name: str) -> FrozenSet[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise CronError(f"empty list item in {field_name} field {text!r}")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise CronError(f"invalid step {step_text!r} in {field_name} field")
            step = int(step_text)

        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            a, b = part.split("-", 1)
            start = _value(a, lo, hi, names, field_name)
            end = _value(b, lo, hi, names, field_name)
            if start > end:
                raise CronError(f"invalid range {part!r} in {field_name} field")
        else:
            start = _value(part, lo, hi, names, field_name)
            # "5/15" means "from 5 to max every 15"
            end = hi if step != 1 else start

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronExpression:
    fields = expression.split()
    if len(fields) != 5:
        raise CronError(f"expected 5 fields, got {len(fields)}: {expression!r}")

    parsed = [
        _parse_field(text, lo, hi, names, name)
        for text, (name, lo, hi, names) in zip(fields, _FIELDS)
    ]
    weekdays = frozenset(0 if d == 7 else d for d in parsed[4])

    return CronExpression(
        expression=expression,
        minutes=parsed[0],
        hours=parsed[1],
        days=parsed[2],
        months=parsed[3],
        weekdays=weekdays,
        days_restricted=not fields[2].startswith("*"),
        weekdays_restricted=not fields[4].startswith("*"),
    )


def matches(expression: str | CronExpression, ts: datetime) -> bool:
    """True if `ts` (UTC, minute resolution) satisfies the cron expression."""
    cron = parse_cron(expression) if isinstance(expression, str) else expression
    return cron.matches(ts)

