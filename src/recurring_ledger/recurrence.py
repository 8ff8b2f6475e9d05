"""Recurrence arithmetic for budget periods and transaction due dates.

All month and year shifts clamp the day-of-month to the last day of the
target month (Jan 31 + 1 month -> Feb 28/29), so no helper here ever
produces an invalid date or rolls into the following month.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TypeVar

from dateutil import tz
from dateutil.relativedelta import relativedelta

from recurring_ledger.models import Recurrence

D = TypeVar("D", date, datetime)

END_OF_DAY = timedelta(hours=23, minutes=59, seconds=59)


def local_now() -> datetime:
    """Current time in the host's zone, with DST-aware offsets."""
    return datetime.now(tz.tzlocal())


def add_months(value: D, months: int) -> D:
    """Shift a date or datetime by whole months, clamping the day."""
    return value + relativedelta(months=months)


def shift(value: D, recurrence: Recurrence, count: int = 1) -> D:
    """Move ``value`` forward by ``count`` recurrence periods.

    NONE (and anything unrecognized) leaves the value untouched.
    """
    if recurrence == Recurrence.DAILY:
        return value + timedelta(days=count)
    if recurrence == Recurrence.WEEKLY:
        return value + timedelta(weeks=count)
    if recurrence == Recurrence.MONTHLY:
        return value + relativedelta(months=count)
    if recurrence == Recurrence.YEARLY:
        return value + relativedelta(years=count)
    return value


def _midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _month_end(start: datetime) -> datetime:
    # day=31 clamps to the month's last day
    return _midnight(start) + relativedelta(day=31) + END_OF_DAY


def next_period(
    recurrence: Recurrence | str, anchor_date: date, now: datetime
) -> tuple[datetime, datetime]:
    """Compute the budget period a template should generate next.

    Args:
        recurrence: The template's recurrence.
        anchor_date: The template's start date; supplies day-of-month
            (monthly) or month and day (yearly).
        now: The evaluation moment. Its tzinfo is carried into the result.

    Returns:
        ``(period_start, period_end)``, both inclusive.
    """
    recurrence = Recurrence.parse(recurrence)
    today = _midnight(now)

    if recurrence == Recurrence.WEEKLY:
        start = today - timedelta(days=now.weekday())
        # More than a day into the week: build next week's budget instead
        if now > start + timedelta(days=1):
            start += timedelta(weeks=1)
        return start, start + timedelta(days=6) + END_OF_DAY

    if recurrence == Recurrence.MONTHLY:
        start = today + relativedelta(day=anchor_date.day)
        if now > start:
            start = today + relativedelta(months=1, day=anchor_date.day)
        return start, _month_end(start)

    if recurrence == Recurrence.YEARLY:
        anniversary = relativedelta(month=anchor_date.month, day=anchor_date.day)
        start = today + anniversary
        if now > start:
            start = today + relativedelta(years=1) + anniversary
        following = start + relativedelta(years=1) + anniversary
        return start, following - timedelta(seconds=1)

    if recurrence == Recurrence.DAILY:
        return today, today + END_OF_DAY

    # NONE never reaches here through the due query; fall back to this month
    start = today + relativedelta(day=1)
    return start, _month_end(start)


def next_due_date(
    recurrence: Recurrence | str, anchor_date: date, occurrences_completed: int
) -> date:
    """Return the date of the next transaction occurrence.

    The result depends only on the anchor and the number of occurrences
    already generated, so repeated evaluation (or a restart) gives the same
    answer.
    """
    recurrence = Recurrence.parse(recurrence)
    if occurrences_completed < 0:
        raise ValueError("occurrences_completed cannot be negative")
    return shift(anchor_date, recurrence, occurrences_completed)


def period_elapsed(
    recurrence: Recurrence | str, last_executed_at: datetime | None, now: datetime
) -> bool:
    """Check whether a full recurrence period has passed since the last run.

    Compared on calendar dates so a job firing a few seconds earlier than
    the previous day's run still counts the day as elapsed.
    """
    if last_executed_at is None:
        return True
    recurrence = Recurrence.parse(recurrence)
    if recurrence == Recurrence.NONE:
        return False
    return shift(last_executed_at.date(), recurrence) <= now.date()
