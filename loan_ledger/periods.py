"""
Calendar period arithmetic: day, week and month stepping plus the Sunday
helpers the weekly collection product relies on.
"""

from datetime import date, timedelta
from typing import List
import calendar

SUNDAY = 6  # date.weekday() value


def add_days(start_date: date, days: int) -> date:
    return start_date + timedelta(days=days)


def add_weeks(start_date: date, weeks: int) -> date:
    return start_date + timedelta(days=7 * weeks)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days


def is_sunday(value: date) -> bool:
    return value.weekday() == SUNDAY


def next_sunday(value: date) -> date:
    """First Sunday strictly after value"""
    days_until = (SUNDAY - value.weekday()) % 7 or 7
    return value + timedelta(days=days_until)


def previous_sunday(value: date) -> date:
    """Last Sunday strictly before value"""
    days_since = (value.weekday() - SUNDAY) % 7 or 7
    return value - timedelta(days=days_since)


def sundays_between(start: date, end: date) -> List[date]:
    """All Sundays in [start, end]"""
    current = start if is_sunday(start) else next_sunday(start)
    sundays = []
    while current <= end:
        sundays.append(current)
        current += timedelta(days=7)
    return sundays


def weekday_name(weekday: int) -> str:
    return calendar.day_name[weekday]
