"""ISO-8601 week arithmetic.

Weeks start on Monday; week 1 is the week containing January 4th.  A week
label is always ``YYYY-Www`` with a zero-padded week number.  All bounds are
timezone-aware UTC datetimes.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Union

from .exceptions import WeekFormatError

_LABEL_RE = re.compile(r"(\d{4})-W(\d{2})")

DateLike = Union[date, datetime]


def parse_week_label(label: str) -> tuple[int, int]:
    """Parse ``"2026-W02"`` into ``(2026, 2)``.

    Raises
    ------
    WeekFormatError
        If the label is malformed or the week is outside 1–53.
    """
    m = _LABEL_RE.fullmatch(label or "")
    if not m:
        raise WeekFormatError(
            f"invalid week format {label!r}: expected YYYY-Www (e.g. 2026-W02)"
        )
    year, week = int(m.group(1)), int(m.group(2))
    if week < 1 or week > 53:
        raise WeekFormatError(f"invalid week number {week}: must be 1-53")
    return year, week


def format_week_label(year: int, week: int) -> str:
    return f"{year:04d}-W{week:02d}"


def week_bounds(year: int, week: int) -> tuple[datetime, datetime]:
    """Return Monday 00:00:00 and Sunday 23:59:59 (UTC) of an ISO week."""
    jan4 = date(year, 1, 4)
    week1_monday = jan4 - timedelta(days=jan4.isoweekday() - 1)
    monday = week1_monday + timedelta(weeks=week - 1)
    sunday = monday + timedelta(days=6)
    start = datetime.combine(monday, time.min, tzinfo=timezone.utc)
    end = datetime.combine(sunday, time(23, 59, 59), tzinfo=timezone.utc)
    return start, end


def iso_week_of(value: DateLike) -> tuple[int, int]:
    iso = value.isocalendar()
    return iso[0], iso[1]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def weeks_in_range(start: DateLike, end: DateLike) -> list[tuple[int, int]]:
    """Every ISO week intersecting ``[start, end]``, oldest first.

    Steps one week at a time from the Monday of ``start``'s week, so the
    cost is proportional to the number of weeks rather than days.
    """
    first, last = _as_date(start), _as_date(end)
    if last < first:
        return []

    cursor = first - timedelta(days=first.isoweekday() - 1)
    weeks: list[tuple[int, int]] = []
    while cursor <= last:
        weeks.append(iso_week_of(cursor))
        cursor += timedelta(weeks=1)
    return weeks


def previous_week(year: int, week: int) -> tuple[int, int]:
    """The ISO week immediately before ``(year, week)``.

    December 28th always falls in the last ISO week of its year, which
    handles the 52/53-week rollover.
    """
    if week > 1:
        return year, week - 1
    return iso_week_of(date(year - 1, 12, 28))


def last_complete_week(today: DateLike | None = None) -> tuple[int, int]:
    """The ISO week before the one containing ``today`` (UTC)."""
    if today is None:
        today = datetime.now(timezone.utc)
    return previous_week(*iso_week_of(_as_date(today)))
