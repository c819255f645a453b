"""Cron expression evaluation.

Expressions use the classic five-field crontab layout (``minute hour
day-of-month month day-of-week``) and are evaluated in one IANA timezone.
The heavy lifting is done by APScheduler's :class:`CronTrigger`; this module
adapts crontab conventions that APScheduler interprets differently:

* day-of-week numbers follow crontab (``0`` and ``7`` are Sunday) rather than
  APScheduler's Monday-based numbering;
* when both day-of-month and day-of-week are restricted a day matches if
  *either* field matches;
* APScheduler extensions (``last``, ``mon#1``, ``L``) are rejected.

Every function here is pure and safe to call from several threads.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone, tzinfo
import re
from typing import Iterator, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.triggers.cron import CronTrigger

from .errors import InvalidCronExpression, InvalidTimezone


_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_FIELD_NAMES = ("minute", "hour", "day-of-month", "month", "day-of-week")

_NUMERIC_PART = re.compile(r"^(\*|\d+(-\d+)?)(/\d+)?$")
_NAMED_PART = re.compile(
    r"^(\*|(\d+|[a-z]{3})(-(\d+|[a-z]{3}))?)(/\d+)?$", re.IGNORECASE
)

# more than a repeated DST hour is ever long
_MAX_FOLD_STEPS = 3 * 60


def resolve_timezone(tz: str | tzinfo) -> tzinfo:
    """Return a ``tzinfo`` for ``tz`` or raise :class:`InvalidTimezone`."""

    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
        raise InvalidTimezone(str(tz)) from exc


def _split(expression: str) -> List[str]:
    if not isinstance(expression, str):
        raise InvalidCronExpression(str(expression), "expression must be a string")
    fields = expression.split()
    if len(fields) != 5:
        raise InvalidCronExpression(
            expression, f"expected 5 fields, got {len(fields)}"
        )
    for index, (name, value) in enumerate(zip(_FIELD_NAMES, fields)):
        pattern = _NAMED_PART if index >= 3 else _NUMERIC_PART
        for part in value.split(","):
            if not pattern.match(part):
                raise InvalidCronExpression(
                    expression, f"unsupported {name} entry {part!r}"
                )
    return fields


def _translate_day_of_week(field: str) -> str:
    """Rewrite a crontab day-of-week field using weekday names."""

    if field == "*":
        return "*"
    names: List[str] = []
    for part in field.split(","):
        if any(ch.isalpha() for ch in part):
            # names mean the same thing to APScheduler
            names.append(part.lower())
            continue
        body, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            raise ValueError(f"invalid day-of-week step: {part}")
        if body == "*":
            first, last = 0, 6
        elif "-" in body:
            low, high = body.split("-", 1)
            first, last = int(low), int(high)
        else:
            first = int(body)
            last = 7 if step_text else first
        if not (0 <= first <= 7 and 0 <= last <= 7) or first > last:
            raise ValueError(f"day-of-week out of range: {part}")
        for day in range(first, last + 1, step):
            name = _DAY_NAMES[day % 7]
            if name not in names:
                names.append(name)
    return ",".join(names)


def _build_triggers(expression: str, zone: tzinfo) -> List[CronTrigger]:
    minute, hour, day, month, day_of_week = _split(expression)
    try:
        weekdays = _translate_day_of_week(day_of_week)
        common = {"minute": minute, "hour": hour, "month": month, "timezone": zone}
        if not day.startswith("*") and not day_of_week.startswith("*"):
            return [
                CronTrigger(day=day, day_of_week="*", **common),
                CronTrigger(day="*", day_of_week=weekdays, **common),
            ]
        return [CronTrigger(day=day, day_of_week=weekdays, **common)]
    except (ValueError, TypeError, KeyError) as exc:
        raise InvalidCronExpression(expression, str(exc)) from exc


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=dt_timezone.utc)
    return instant.astimezone(dt_timezone.utc)


def validate_cron(expression: str) -> str:
    """Return ``expression`` normalised to single spaces if it is valid.

    Expressions that parse but can never fire (``0 0 30 2 *``) are rejected
    as well.
    """

    next_occurrence(expression, dt_timezone.utc, datetime.now(dt_timezone.utc))
    return " ".join(expression.split())


def next_occurrence(
    expression: str, timezone: str | tzinfo, from_instant: datetime
) -> datetime:
    """Return the earliest instant strictly after ``from_instant`` matching
    ``expression`` in ``timezone``.

    Raises :class:`InvalidCronExpression` for malformed expressions or ones
    that can never fire, and :class:`InvalidTimezone` for unknown zones.
    """

    zone = resolve_timezone(timezone)
    triggers = _build_triggers(expression, zone)
    origin = _as_utc(from_instant)
    # seeded in UTC: arithmetic on zone-local values drops ``fold``
    start = origin + timedelta(microseconds=1)
    for _ in range(_MAX_FOLD_STEPS):
        candidates = []
        for trigger in triggers:
            fire_time = trigger.get_next_fire_time(None, start)
            if fire_time is not None:
                candidates.append(fire_time)
        if not candidates:
            raise InvalidCronExpression(expression, "expression never fires")
        result = min(candidates, key=_as_utc)
        if _as_utc(result) > origin:
            return result
        # a wall-clock time repeated by a DST fold resolved to its first
        # occurrence; step the search past the repeated hour
        start += timedelta(minutes=1)
    raise InvalidCronExpression(
        expression, f"no occurrence found after {origin.isoformat()}"
    )


def iter_occurrences(
    expression: str,
    timezone: str | tzinfo,
    from_instant: datetime,
    count: int,
) -> Iterator[datetime]:
    """Yield the next ``count`` occurrences after ``from_instant``."""

    current = from_instant
    for _ in range(count):
        current = next_occurrence(expression, timezone, current)
        yield current
