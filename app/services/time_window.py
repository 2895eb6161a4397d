"""Bidding window policy.

An opportunity's phase is computed, never stored. The window is the half-open
interval ``[open_date, event_date)``; when ``bid_open_date`` is not set the
window opens a fixed number of days before the event.

A misconfigured window (``open_date >= event_date``) is left as-is: it stays
``COMING_SOON`` until the event date and is ``COMPLETED`` afterwards.
"""

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from core.config import config

DateInput = Union[datetime, str, None]


class BidPhase(str, enum.Enum):
    """Lifecycle phase of an opportunity."""

    COMING_SOON = "coming_soon"
    OPEN_FOR_BIDDING = "open_for_bidding"
    COMPLETED = "completed"


class InvalidDateError(ValueError):
    """Raised when an opportunity date is missing or cannot be parsed."""


def parse_date(value: DateInput, field: str = "date") -> datetime:
    """Coerce a datetime or ISO-8601 string into an aware UTC datetime."""
    if value is None:
        raise InvalidDateError(f"{field} is required")
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidDateError(f"{field} is not a valid ISO-8601 date: {value!r}") from e
    if not isinstance(value, datetime):
        raise InvalidDateError(f"{field} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        # SQLite hands back naive values; everything is stored in UTC
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def default_window() -> timedelta:
    return timedelta(days=config.DEFAULT_BID_WINDOW_DAYS)


def effective_open_date(event_date: DateInput, bid_open_date: DateInput = None) -> datetime:
    """When bidding opens: the explicit open date or a week before the event."""
    event = parse_date(event_date, "event_date")
    if bid_open_date is None:
        return event - default_window()
    return parse_date(bid_open_date, "bid_open_date")


def phase(
    event_date: DateInput,
    bid_open_date: DateInput = None,
    now: Optional[datetime] = None,
) -> BidPhase:
    """Compute the phase of an opportunity at ``now`` (defaults to the current time).

    Raises:
        InvalidDateError: a date is missing or malformed
    """
    event = parse_date(event_date, "event_date")
    opens = effective_open_date(event, bid_open_date)
    current = parse_date(now, "now") if now is not None else datetime.now(timezone.utc)

    if current >= event:
        return BidPhase.COMPLETED
    if current >= opens:
        return BidPhase.OPEN_FOR_BIDDING
    return BidPhase.COMING_SOON


def is_open(
    event_date: DateInput,
    bid_open_date: DateInput = None,
    now: Optional[datetime] = None,
) -> bool:
    return phase(event_date, bid_open_date, now) == BidPhase.OPEN_FOR_BIDDING


def is_misconfigured(event_date: DateInput, bid_open_date: DateInput) -> bool:
    """True when the window can never be open (opens at or after the event)."""
    if bid_open_date is None:
        return False
    return effective_open_date(event_date, bid_open_date) >= parse_date(event_date, "event_date")
