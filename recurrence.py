"""
Recurrence expansion: turns one template (start, end) plus a recurrence rule
into the concrete occurrences of a series.

Occurrences keep the template duration and the wall-clock time of the
template start in its own offset. Weekdays are evaluated in that offset too,
so callers should pass the start in the time zone the user picked it in.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from config import DEFAULT_RECURRENCE_MONTHS
from errors import InvalidRecurrenceError, InvalidTimeRangeError
from models import DayOfWeek, RecurrencePattern, RecurrenceType, VisitFrequency, weekday_tag

logger = logging.getLogger(__name__)

# Safety ceiling on the size of one series, independent of the end bound
MAX_OCCURRENCES = 1000

Occurrence = Tuple[datetime, datetime]


def default_until(start: datetime) -> datetime:
    return start + relativedelta(months=DEFAULT_RECURRENCE_MONTHS)


def _normalize_days(days: Iterable[Union[DayOfWeek, str]]) -> FrozenSet[DayOfWeek]:
    normalized = set()
    for day in days:
        if isinstance(day, DayOfWeek):
            normalized.add(day)
            continue
        try:
            normalized.add(DayOfWeek(str(day).strip().lower()))
        except ValueError:
            raise InvalidRecurrenceError(f"Unknown day of week: {day!r}") from None
    return frozenset(normalized)


def _stepped(start: datetime, step: Callable[[int], Union[timedelta, relativedelta]], until: datetime) -> Iterator[datetime]:
    # Each start is computed from the anchor so month clamping never accumulates
    for k in range(MAX_OCCURRENCES):
        current = start + step(k)
        if current >= until:
            return
        yield current
    logger.warning("Recurrence truncated at %d occurrences", MAX_OCCURRENCES)


def _walk_weekdays(start: datetime, interval: int, days: FrozenSet[DayOfWeek], until: datetime) -> Iterator[datetime]:
    # Weeks run Sunday..Saturday; on reaching Sunday jump over the skipped weeks
    current = start
    emitted = 0
    while current < until:
        if weekday_tag(current) in days:
            if emitted >= MAX_OCCURRENCES:
                logger.warning("Recurrence truncated at %d occurrences", MAX_OCCURRENCES)
                return
            yield current
            emitted += 1
        current = current + timedelta(days=1)
        if weekday_tag(current) is DayOfWeek.SUNDAY:
            current = current + timedelta(weeks=interval - 1)


def expand(
    start: datetime,
    end: datetime,
    recurrence_type: Union[RecurrenceType, str],
    interval: int = 1,
    days_of_week: Iterable[Union[DayOfWeek, str]] = (),
    until: Optional[datetime] = None,
) -> List[Occurrence]:
    """
    Expand a recurrence rule into ordered (start, end) occurrences.

    `until` is exclusive on occurrence starts and defaults to three months
    (DEFAULT_RECURRENCE_MONTHS) after `start`. Monthly steps keep the
    day-of-month and clamp to the last day of shorter months, so a series
    anchored on Jan 31 lands on Feb 28/29, Mar 31, Apr 30 and so on.
    """
    if not start < end:
        raise InvalidTimeRangeError("End time must be after start time")
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise InvalidRecurrenceError(f"Recurrence interval must be a positive integer, got {interval!r}")
    try:
        recurrence_type = RecurrenceType(recurrence_type)
    except ValueError:
        raise InvalidRecurrenceError(f"Unknown recurrence type: {recurrence_type!r}") from None
    days = _normalize_days(days_of_week)

    if until is None:
        until = default_until(start)
    elif (until.tzinfo is None) != (start.tzinfo is None):
        raise InvalidRecurrenceError("Recurrence end date and start must both carry a timezone, or neither")

    if recurrence_type is RecurrenceType.NONE:
        return [(start, end)]

    if recurrence_type is RecurrenceType.WEEKLY and days:
        starts = _walk_weekdays(start, interval, days, until)
    elif recurrence_type is RecurrenceType.DAILY:
        starts = _stepped(start, lambda k: timedelta(days=k * interval), until)
    elif recurrence_type is RecurrenceType.WEEKLY:
        starts = _stepped(start, lambda k: timedelta(weeks=k * interval), until)
    else:
        starts = _stepped(start, lambda k: relativedelta(months=k * interval), until)

    duration = end - start
    return [(s, s + duration) for s in starts]


def expand_pattern(start: datetime, end: datetime, pattern: RecurrencePattern) -> List[Occurrence]:
    return expand(start, end, pattern.type, pattern.interval, pattern.days_of_week, pattern.until)


_VISIT_STEPS = {
    VisitFrequency.WEEKLY: (RecurrenceType.WEEKLY, 1),
    VisitFrequency.BI_WEEKLY: (RecurrenceType.WEEKLY, 2),
    VisitFrequency.MONTHLY: (RecurrenceType.MONTHLY, 1),
}


def visit_pattern(frequency: Union[VisitFrequency, str], last_day: date) -> RecurrencePattern:
    """Pattern for a run of visits whose final day `last_day` is inclusive."""
    try:
        recurrence_type, interval = _VISIT_STEPS[VisitFrequency(frequency)]
    except ValueError:
        raise InvalidRecurrenceError(f"Unknown visit frequency: {frequency!r}") from None
    until = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return RecurrencePattern(type=recurrence_type, interval=interval, until=until)


def expand_visit_dates(first_day: date, pattern: RecurrencePattern) -> List[date]:
    # Visits are whole days; anchor at UTC midnight so no offset moves the date
    anchor = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
    return [s.date() for s, _ in expand_pattern(anchor, anchor + timedelta(hours=1), pattern)]
