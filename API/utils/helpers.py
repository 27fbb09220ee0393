"""
Date helpers shared by the billing processors.
"""

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta


def add_months(value: datetime, months: int = 1) -> datetime:
    """
    Calendar-month arithmetic. The day is clamped to the last day of the
    target month: Jan 31 + 1 month = Feb 28 (or 29).
    """
    return value + relativedelta(months=months)


def day_window(start: datetime, days: int = 1):
    """Half-open [start, start + days) range."""
    return start, start + timedelta(days=days)
