"""Week resolution: every payroll and invoice week runs Saturday to Friday.

The first day of the week is fixed here rather than taken from a locale, so the
same date always lands in the same week regardless of where the code runs.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import NamedTuple
from zoneinfo import ZoneInfo

from tutorpay.config import get_settings
from tutorpay.exceptions import ValidationError

WEEK_START_WEEKDAY = 5  # date.weekday(): Monday=0 ... Saturday=5
WEEK_LENGTH = timedelta(days=7)
_LAST_DAY_OFFSET = timedelta(days=6)


class WeekRange(NamedTuple):
    """Inclusive [start, end] calendar-day range of one week."""

    start: date
    end: date

    @property
    def key(self) -> str:
        return self.start.isoformat()


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def week_range_for(value: date | datetime) -> WeekRange:
    """Return the Saturday-to-Friday week containing ``value``."""
    day = _as_date(value)
    start = day - timedelta(days=(day.weekday() - WEEK_START_WEEKDAY) % 7)
    return WeekRange(start=start, end=start + _LAST_DAY_OFFSET)


def week_key_for(value: date | datetime) -> str:
    """Canonical ``YYYY-MM-DD`` key of the week containing ``value``."""
    return week_range_for(value).key


def next_week(week_start: date) -> date:
    return week_start + WEEK_LENGTH


def prev_week(week_start: date) -> date:
    return week_start - WEEK_LENGTH


def business_today() -> date:
    """Today's date in the business timezone."""
    return datetime.now(ZoneInfo(get_settings().business_timezone)).date()


def current_week_start(today: date | None = None) -> date:
    return week_range_for(today or business_today()).start


def parse_week_key(text: str) -> date:
    """Parse a week key, rejecting anything that is not a Saturday date."""
    try:
        parsed = date.fromisoformat(text)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid week key: {text!r}") from None
    if parsed.weekday() != WEEK_START_WEEKDAY:
        raise ValidationError(f"Week key {text} is not a Saturday")
    return parsed


def week_bounds_problem(week_start: date, week_end: date) -> str | None:
    """Describe why ``[week_start, week_end]`` is not one Saturday-to-Friday week, or None."""
    if week_start.weekday() != WEEK_START_WEEKDAY:
        return f"Week start {week_start.isoformat()} is not a Saturday"
    if week_end != week_start + _LAST_DAY_OFFSET:
        return f"Week end {week_end.isoformat()} must be {(week_start + _LAST_DAY_OFFSET).isoformat()}"
    return None


def validate_week_bounds(week_start: date, week_end: date) -> WeekRange:
    """Check that ``[week_start, week_end]`` is exactly one Saturday-to-Friday week."""
    problem = week_bounds_problem(week_start, week_end)
    if problem is not None:
        raise ValidationError(problem)
    return WeekRange(start=week_start, end=week_end)


def week_interval(week: WeekRange) -> tuple[datetime, datetime]:
    """Closed local-time interval covering every instant of the week."""
    return datetime.combine(week.start, time.min), datetime.combine(week.end, time.max)
