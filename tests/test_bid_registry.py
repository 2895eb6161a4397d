from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.bid import Bid
from app.models.student import Student
from app.models.token_history import TokenHistory
from app.services.bid_registry import BidRegistry
from app.services.notifications import (
    ChangeNotifier,
    Inserted,
    Updated,
    opportunity_channel,
    student_channel,
)
from core.exceptions.base import ErrorCode

pytestmark = pytest.mark.asyncio


async def tokens_of(db_session: AsyncSession, student_id: str) -> int:
    student = await db_session.get(Student, student_id, populate_existing=True)
    return student.tokens_remaining


async def bid_total(db_session: AsyncSession) -> int:
    return (await db_session.execute(select(func.count(Bid.id)))).scalar()


class TestSubmitBid:
    """Tests for placing bids."""

    async def test_successful_bid(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """A bid spends the token and records the pair."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.success
        assert result.bid_id is not None
        assert result.student.tokens_remaining == 0
        assert await registry.has_bid(student.id, open_opportunity.id)
        assert await tokens_of(db_session, student.id) == 0

    async def test_token_already_used(
        self, db_session: AsyncSession, create_students, create_opportunity
    ):
        """A second bid, even on another opportunity, is rejected."""
        student = (await create_students(1))[0]
        first = await create_opportunity(title="First", opens_in=timedelta(days=-1))
        second = await create_opportunity(title="Second", opens_in=timedelta(days=-1))
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        assert (await registry.submit_bid(student.id, first.id)).success
        result = await registry.submit_bid(student.id, second.id)

        assert not result.success
        assert result.error == ErrorCode.TOKEN_UNAVAILABLE
        assert not await registry.has_bid(student.id, second.id)

    async def test_window_not_open(
        self, db_session: AsyncSession, create_students, upcoming_opportunity
    ):
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        result = await registry.submit_bid(student.id, upcoming_opportunity.id)

        assert result.error == ErrorCode.WINDOW_CLOSED
        assert await tokens_of(db_session, student.id) == 1

    async def test_window_closed(
        self, db_session: AsyncSession, create_students, past_opportunity
    ):
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        result = await registry.submit_bid(student.id, past_opportunity.id)

        assert result.error == ErrorCode.WINDOW_CLOSED
        assert await tokens_of(db_session, student.id) == 1

    async def test_window_checked_at_submission_time(
        self, db_session: AsyncSession, create_students, create_opportunity
    ):
        """The phase comes from the injected clock, not from stored state."""
        student = (await create_students(1))[0]
        opportunity = await create_opportunity(event_in=timedelta(days=30))
        later = datetime.now(timezone.utc) + timedelta(days=25)
        registry = BidRegistry(db_session, notifier=ChangeNotifier(), clock=lambda: later)

        assert (await registry.submit_bid(student.id, opportunity.id)).success

    async def test_duplicate_bid_precedence(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """A repeat bid on the same opportunity reports the spent token first."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        assert (await registry.submit_bid(student.id, open_opportunity.id)).success
        result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.error == ErrorCode.TOKEN_UNAVAILABLE
        assert await bid_total(db_session) == 1

    async def test_duplicate_bid_with_token_available(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """With the token somehow back, the existing bid still blocks a second one."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        assert (await registry.submit_bid(student.id, open_opportunity.id)).success

        student = await db_session.get(Student, student.id)
        student.tokens_remaining = 1
        await db_session.commit()

        result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.error == ErrorCode.DUPLICATE_BID
        assert await tokens_of(db_session, student.id) == 1

    async def test_student_from_other_class(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        from app.models.class_ import Class

        other = Class(name="Other class", password_hash="x", reward_title="Lunch", capacity=1)
        db_session.add(other)
        await db_session.commit()
        outsider = (await create_students(1, class_id=other.id))[0]

        result = await BidRegistry(db_session, notifier=ChangeNotifier()).submit_bid(
            outsider.id, open_opportunity.id
        )
        assert result.error == ErrorCode.NOT_FOUND

    async def test_unknown_opportunity(self, db_session: AsyncSession, create_students):
        student = (await create_students(1))[0]
        result = await BidRegistry(db_session, notifier=ChangeNotifier()).submit_bid(
            student.id, "missing"
        )
        assert result.error == ErrorCode.NOT_FOUND


class TestAtomicity:
    """The token spend and the bid insert commit together or not at all."""

    async def test_insert_failure_keeps_token(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        with patch.object(
            BidRegistry,
            "_record_bid",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))),
        ):
            result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.error == ErrorCode.PERSISTENCE_ERROR
        assert await tokens_of(db_session, student.id) == 1
        assert await bid_total(db_session) == 0
        history = await db_session.execute(select(func.count(TokenHistory.id)))
        assert history.scalar() == 0

    async def test_committed_bid_reported_without_reload(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """Nothing after the commit can turn a recorded bid into a failure."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())

        with patch.object(
            db_session,
            "refresh",
            AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection reset"))),
        ):
            result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.success
        assert result.student.tokens_remaining == 0
        assert await bid_total(db_session) == 1

    async def test_lost_race_on_token(
        self, db_session: AsyncSession, create_students, create_opportunity
    ):
        """A stale availability check still cannot spend the token twice."""
        student = (await create_students(1))[0]
        first = await create_opportunity(title="First", opens_in=timedelta(days=-1))
        second = await create_opportunity(title="Second", opens_in=timedelta(days=-1))
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        assert (await registry.submit_bid(student.id, first.id)).success

        with patch.object(registry.ledger, "is_available", AsyncMock(return_value=True)):
            result = await registry.submit_bid(student.id, second.id)

        assert result.error == ErrorCode.TOKEN_UNAVAILABLE
        assert await bid_total(db_session) == 1
        assert await tokens_of(db_session, student.id) == 0

    async def test_lost_race_on_bid_constraint(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """The unique constraint turns a racing duplicate into DUPLICATE_BID."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        assert (await registry.submit_bid(student.id, open_opportunity.id)).success

        student = await db_session.get(Student, student.id)
        student.tokens_remaining = 1
        await db_session.commit()

        with patch.object(BidRegistry, "has_bid", AsyncMock(return_value=False)):
            result = await registry.submit_bid(student.id, open_opportunity.id)

        assert result.error == ErrorCode.DUPLICATE_BID
        assert await tokens_of(db_session, student.id) == 1
        assert await bid_total(db_session) == 1


class TestQueries:
    """Tests for bidder listings and counts."""

    async def test_bids_for_in_submission_order(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        students = await create_students(4)
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        order = [students[2], students[0], students[3]]
        for student in order:
            assert (await registry.submit_bid(student.id, open_opportunity.id)).success

        bidders = await registry.bids_for(open_opportunity.id)
        assert [b.id for b in bidders] == [s.id for s in order]
        assert await registry.bid_count(open_opportunity.id) == 3

    async def test_bid_counts_include_empty(
        self, db_session: AsyncSession, test_class, create_students, create_opportunity
    ):
        students = await create_students(2)
        busy = await create_opportunity(title="Busy", opens_in=timedelta(days=-1))
        quiet = await create_opportunity(title="Quiet", opens_in=timedelta(days=-1))
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        for student in students:
            await registry.submit_bid(student.id, busy.id)

        counts = await registry.bid_counts_for_class(test_class.id)
        assert counts == {busy.id: 2, quiet.id: 0}

    async def test_recent_bids(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        students = await create_students(2)
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        for student in students:
            await registry.submit_bid(student.id, open_opportunity.id)

        old_bid = (
            await db_session.execute(select(Bid).where(Bid.student_id == students[0].id))
        ).scalar_one()
        old_bid.created_at = datetime.now(timezone.utc) - timedelta(hours=1)
        await db_session.commit()

        recent = await registry.recent_bids(open_opportunity.id)
        assert [b.student_id for b in recent] == [students[1].id]

    async def test_students_with_bids(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        students = await create_students(3)
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        await registry.submit_bid(students[1].id, open_opportunity.id)

        assert await registry.students_with_bids([s.id for s in students]) == {students[1].id}
        assert await registry.students_with_bids([]) == set()


class TestNotifications:
    """Successful bids publish change events."""

    async def test_bid_publishes_events(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        student = (await create_students(1))[0]
        hub = ChangeNotifier()
        seen = []
        hub.subscribe(opportunity_channel(open_opportunity.id), seen.append)
        student_events = []
        hub.subscribe(student_channel(student.id), student_events.append)

        await BidRegistry(db_session, notifier=hub).submit_bid(student.id, open_opportunity.id)

        assert [type(e) for e in seen] == [Inserted, Updated]
        assert seen[0].table == "bids"
        assert seen[0].record.student_id == student.id
        assert len(student_events) == 1
        assert student_events[0].record.has_used_token
        assert student_events[0].record.has_bid

    async def test_failed_bid_publishes_nothing(
        self, db_session: AsyncSession, create_students, upcoming_opportunity
    ):
        student = (await create_students(1))[0]
        hub = ChangeNotifier()
        seen = []
        hub.subscribe(opportunity_channel(upcoming_opportunity.id), seen.append)

        await BidRegistry(db_session, notifier=hub).submit_bid(student.id, upcoming_opportunity.id)

        assert seen == []


class TestReleaseToken:
    """Tests for the administrative bid withdrawal and token restore."""

    async def test_release_withdraws_bid(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        await registry.submit_bid(student.id, open_opportunity.id)

        result = await registry.release_token(student.id, opportunity_id=open_opportunity.id)

        assert result.success
        assert result.student.tokens_remaining == 1
        assert not await registry.has_bid(student.id, open_opportunity.id)

    async def test_release_refused_while_bid_remains(
        self, db_session: AsyncSession, create_students, open_opportunity
    ):
        """Restoring without withdrawing would leave a token next to a bid."""
        student = (await create_students(1))[0]
        registry = BidRegistry(db_session, notifier=ChangeNotifier())
        await registry.submit_bid(student.id, open_opportunity.id)

        result = await registry.release_token(student.id)

        assert result.error == ErrorCode.TOKEN_UNAVAILABLE
        assert await tokens_of(db_session, student.id) == 0
        assert await registry.has_bid(student.id, open_opportunity.id)

    async def test_release_unknown_student(self, db_session: AsyncSession):
        result = await BidRegistry(db_session, notifier=ChangeNotifier()).release_token("missing")
        assert result.error == ErrorCode.NOT_FOUND
