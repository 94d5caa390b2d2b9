"""
Billing calendar helpers.

All ledger timestamps are naive UTC datetimes.
"""

from datetime import date, datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_billing_periods(
    start: datetime,
    months: int,
    periods: int = 1,
    anchor_day: Optional[int] = None
) -> datetime:
    """
    Advance a billing date by whole periods.

    Month arithmetic clamps to the last day of shorter months
    (Jan 31 + 1 month -> Feb 28/29). Passing the subscription's anchor day
    restores it after a clamp, so Jan 31 -> Feb 28 -> Mar 31.
    """
    shift = relativedelta(months=months * periods)
    if anchor_day is not None:
        shift += relativedelta(day=anchor_day)
    return start + shift


def calendar_days_until(target: datetime, now: datetime) -> int:
    """Whole calendar days between now's date and the target's date."""
    return (target.date() - now.date()).days


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), datetime.min.time())


def day_bounds(day: date) -> tuple:
    """Half-open [start, end) bounds of a calendar day."""
    start = datetime.combine(day, datetime.min.time())
    return start, start + relativedelta(days=1)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)
