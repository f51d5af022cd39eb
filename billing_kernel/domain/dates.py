"""
Calendar arithmetic for rent periods, grace periods and overdue reporting.

All functions are pure and operate on ``datetime.date`` -- rent is billed
per calendar day, so time-of-day never influences a result.
"""

import calendar
from datetime import date, timedelta


def days_in_month(day: date) -> int:
    """Number of days in the calendar month containing ``day``."""
    return calendar.monthrange(day.year, day.month)[1]


def first_day_of_month(day: date) -> date:
    return day.replace(day=1)


def last_day_of_month(day: date) -> date:
    return day.replace(day=days_in_month(day))


def first_day_of_next_month(day: date) -> date:
    return last_day_of_month(day) + timedelta(days=1)


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Signed whole days from ``start`` to ``end`` (end - start)."""
    return (end - start).days


def inclusive_day_count(start: date, end: date) -> int:
    """Days from ``start`` through ``end``, both ends counted."""
    return days_between(start, end) + 1


def days_overdue(due_date: date, as_of: date) -> int:
    """Whole days past ``due_date``; 0 when not yet due."""
    if due_date >= as_of:
        return 0
    return days_between(due_date, as_of)
