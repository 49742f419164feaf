"""
Delivery period and time window calculations.

All functions read the local wall clock of the running process. Timestamps
are stored as naive ISO strings ("2024-01-15T06:00:00"), so the calendar date
of a stored timestamp is its first ten characters.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

from config import DELIVERY_HOURS, PAYMENT_WINDOW

Timestamp = Union[str, datetime]


def now_local() -> datetime:
    return datetime.now().replace(microsecond=0)


def timestamp(moment: Optional[datetime] = None) -> str:
    return (moment or now_local()).replace(microsecond=0).isoformat()


def parse_timestamp(value: Timestamp) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _hour(hour: Optional[int]) -> int:
    return now_local().hour if hour is None else hour


def current_delivery_period(now: Optional[datetime] = None) -> str:
    """Today's date as YYYY-MM-DD. Early-morning hours belong to today too."""
    return (now or now_local()).date().isoformat()


def is_delivery_hours(hour: Optional[int] = None) -> bool:
    start, end = DELIVERY_HOURS
    return start <= _hour(hour) <= end


def is_payment_window(hour: Optional[int] = None) -> bool:
    start, end = PAYMENT_WINDOW
    return start <= _hour(hour) <= end


def settlement_period(now: Optional[datetime] = None) -> str:
    """The delivery period a settlement submitted at ``now`` pays for.

    Inside the payment window this is the delivery day that closed at
    midnight; at any other time it is the day in progress.
    """
    now = now or now_local()
    if is_payment_window(now.hour):
        return (now.date() - timedelta(days=1)).isoformat()
    return current_delivery_period(now)


def period_of(value: Timestamp) -> str:
    return parse_timestamp(value).date().isoformat()


def month_of(now: Optional[datetime] = None) -> str:
    return (now or now_local()).strftime("%Y-%m")


def hours_until_delivery_window(now: Optional[datetime] = None) -> int:
    """0 while deliveries are open, else whole hours until 6:00 AM."""
    hour = (now or now_local()).hour
    start, _ = DELIVERY_HOURS
    if is_delivery_hours(hour):
        return 0
    if hour < start:
        return start - hour
    return 24 - hour + start


def delivery_window_message(now: Optional[datetime] = None) -> str:
    hours = hours_until_delivery_window(now)
    if hours == 0:
        return "Delivery window is currently open"
    return f"Delivery opens in {hours} hour{'' if hours == 1 else 's'}"
