from datetime import datetime, timedelta, timezone

import pytest

from app.services import time_window
from app.services.time_window import BidPhase, InvalidDateError

EVENT = datetime(2026, 3, 20, 18, 0, tzinfo=timezone.utc)


class TestPhase:
    """Tests for computing an opportunity's phase."""

    def test_default_window_opens_a_week_before(self):
        """Without an explicit open date bidding opens seven days ahead."""
        assert time_window.effective_open_date(EVENT) == EVENT - timedelta(days=7)

    def test_coming_soon_before_window(self):
        now = EVENT - timedelta(days=8)
        assert time_window.phase(EVENT, None, now) == BidPhase.COMING_SOON

    def test_open_at_window_start(self):
        """The window includes its opening instant."""
        now = EVENT - timedelta(days=7)
        assert time_window.phase(EVENT, None, now) == BidPhase.OPEN_FOR_BIDDING

    def test_open_just_before_event(self):
        now = EVENT - timedelta(microseconds=1)
        assert time_window.phase(EVENT, None, now) == BidPhase.OPEN_FOR_BIDDING

    def test_completed_at_event_date(self):
        """The window excludes the event instant itself."""
        assert time_window.phase(EVENT, None, EVENT) == BidPhase.COMPLETED

    def test_explicit_open_date(self):
        opens = EVENT - timedelta(days=2)
        assert time_window.phase(EVENT, opens, EVENT - timedelta(days=3)) == BidPhase.COMING_SOON
        assert time_window.phase(EVENT, opens, EVENT - timedelta(days=1)) == BidPhase.OPEN_FOR_BIDDING

    def test_is_open(self):
        assert time_window.is_open(EVENT, None, EVENT - timedelta(days=1))
        assert not time_window.is_open(EVENT, None, EVENT + timedelta(days=1))


class TestMisconfiguredWindow:
    """An open date at or after the event date is kept as configured."""

    def test_never_opens(self):
        opens = EVENT + timedelta(days=1)
        assert time_window.is_misconfigured(EVENT, opens)
        assert time_window.phase(EVENT, opens, EVENT - timedelta(hours=1)) == BidPhase.COMING_SOON
        assert time_window.phase(EVENT, opens, EVENT + timedelta(hours=1)) == BidPhase.COMPLETED

    def test_open_date_equal_to_event(self):
        assert time_window.is_misconfigured(EVENT, EVENT)

    def test_default_window_is_fine(self):
        assert not time_window.is_misconfigured(EVENT, None)


class TestParseDate:
    """Tests for date coercion."""

    def test_iso_string_with_z(self):
        assert time_window.parse_date("2026-03-20T18:00:00Z") == EVENT

    def test_naive_datetime_is_utc(self):
        assert time_window.parse_date(datetime(2026, 3, 20, 18, 0)) == EVENT

    def test_offset_is_normalised(self):
        value = datetime(2026, 3, 20, 20, 0, tzinfo=timezone(timedelta(hours=2)))
        assert time_window.parse_date(value) == EVENT

    def test_missing_date_raises(self):
        with pytest.raises(InvalidDateError):
            time_window.phase(None)

    def test_malformed_date_raises(self):
        with pytest.raises(InvalidDateError):
            time_window.phase("next tuesday")

    def test_invalid_date_is_value_error(self):
        with pytest.raises(ValueError):
            time_window.parse_date(12345)
