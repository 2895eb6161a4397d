"""Bid registry: records bids and keeps them consistent with the token ledger."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.models.bid import Bid
from app.models.opportunity import Opportunity
from app.models.student import Student
from app.models.token_history import TokenReason
from app.schemas.bid import BidResponse
from app.schemas.student import StudentResponse
from app.services import time_window
from app.services.notifications import (
    ChangeNotifier,
    Deleted,
    Inserted,
    Updated,
    class_channel,
    notifier as default_notifier,
    opportunity_channel,
    student_channel,
)
from app.services.time_window import BidPhase, InvalidDateError
from app.services.token_ledger import TokenLedger
from core.config import config
from core.exceptions.base import ErrorCode
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BidResult:
    """Outcome of a bid submission."""

    success: bool
    bid: Optional[Bid] = None
    student: Optional[Student] = None
    error: Optional[ErrorCode] = None
    message: Optional[str] = None

    @property
    def bid_id(self) -> Optional[str]:
        return self.bid.id if self.bid else None


def _failure(error: ErrorCode, message: str) -> BidResult:
    return BidResult(success=False, error=error, message=message)


class BidRegistry:
    """
    Submit and query bids.

    ``submit_bid`` owns its transaction: the token spend and the bid insert
    commit together or not at all.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        notifier: Optional[ChangeNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_session = db_session
        self.ledger = TokenLedger(db_session)
        self.notifier = notifier or default_notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def submit_bid(self, student_id: str, opportunity_id: str) -> BidResult:
        """
        Place a bid for a student on an opportunity.

        Checks, in order: the window is open, the token is available, and no
        bid exists for the pair. Then spends the token and records the bid.
        """
        logger.info(f"Bid submission: student={student_id}, opportunity={opportunity_id}")
        try:
            result = await self._submit(student_id, opportunity_id)
        except IntegrityError:
            # Lost a race with a concurrent submission for the same pair
            await self.db_session.rollback()
            logger.info(f"Duplicate bid rejected by constraint: {student_id}/{opportunity_id}")
            return _failure(ErrorCode.DUPLICATE_BID, "Student has already bid on this opportunity")
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Bid submission failed for student {student_id}: {e}", exc_info=True)
            return _failure(ErrorCode.PERSISTENCE_ERROR, "Could not record bid")

        if not result.success:
            await self.db_session.rollback()
            return result

        await self._publish_submission(result)
        return result

    async def _submit(self, student_id: str, opportunity_id: str) -> BidResult:
        opportunity = await Opportunity.get_by_id(self.db_session, opportunity_id)
        if not opportunity:
            return _failure(ErrorCode.NOT_FOUND, "Opportunity not found")

        student = await Student.get_by_id(self.db_session, student_id)
        if not student or student.class_id != opportunity.class_id:
            return _failure(ErrorCode.NOT_FOUND, "Student not found in this class")

        try:
            current_phase = time_window.phase(
                opportunity.event_date, opportunity.bid_open_date, self._clock()
            )
        except InvalidDateError as e:
            logger.error(f"Opportunity {opportunity_id} has invalid dates: {e}")
            return _failure(ErrorCode.INVALID_DATE, str(e))

        if current_phase != BidPhase.OPEN_FOR_BIDDING:
            return _failure(
                ErrorCode.WINDOW_CLOSED,
                "Bidding has not opened yet" if current_phase == BidPhase.COMING_SOON
                else "Bidding has closed",
            )

        if not await self.ledger.is_available(student_id):
            return _failure(ErrorCode.TOKEN_UNAVAILABLE, "Token already used")

        if await self.has_bid(student_id, opportunity_id):
            return _failure(ErrorCode.DUPLICATE_BID, "Student has already bid on this opportunity")

        spent = await self.ledger.consume(student_id, opportunity_id=opportunity_id)
        if not spent.success:
            # Another request spent the token between the check and the update
            return _failure(spent.error or ErrorCode.TOKEN_UNAVAILABLE, spent.message or "Token already used")

        bid = await self._record_bid(student_id, opportunity_id)
        await self.db_session.commit()
        # Balance as written by the conditional UPDATE; no reload after commit
        set_committed_value(student, "tokens_remaining", spent.tokens_remaining)

        logger.info(f"Bid {bid.id} recorded for student {student_id} on {opportunity_id}")
        return BidResult(success=True, bid=bid, student=student)

    async def _record_bid(self, student_id: str, opportunity_id: str) -> Bid:
        bid = Bid(student_id=student_id, opportunity_id=opportunity_id)
        self.db_session.add(bid)
        await self.db_session.flush()
        return bid

    async def _publish_submission(self, result: BidResult) -> None:
        student = result.student
        bid = result.bid
        channels = [
            class_channel(student.class_id),
            opportunity_channel(bid.opportunity_id),
        ]
        await self.notifier.publish(channels, Inserted("bids", BidResponse.model_validate(bid)))
        student_record = StudentResponse.model_validate(student).model_copy(update={"has_bid": True})
        await self.notifier.publish(
            channels + [student_channel(student.id)], Updated("students", student_record)
        )

    async def has_bid(self, student_id: str, opportunity_id: str) -> bool:
        return await Bid.get_for_pair(self.db_session, student_id, opportunity_id) is not None

    async def bids_for(self, opportunity_id: str) -> List[Student]:
        """Bidders on an opportunity in submission order."""
        result = await self.db_session.execute(
            select(Student)
            .join(Bid, Bid.student_id == Student.id)
            .where(Bid.opportunity_id == opportunity_id)
            .order_by(Bid.created_at, Bid.id)
        )
        return list(result.scalars().all())

    async def bid_count(self, opportunity_id: str) -> int:
        result = await self.db_session.execute(
            select(func.count(Bid.id)).where(Bid.opportunity_id == opportunity_id)
        )
        return result.scalar() or 0

    async def bid_counts_for_class(self, class_id: str) -> Dict[str, int]:
        """Bid totals for every opportunity of a class, including zero counts."""
        result = await self.db_session.execute(
            select(Opportunity.id, func.count(Bid.id))
            .outerjoin(Bid, Bid.opportunity_id == Opportunity.id)
            .where(Opportunity.class_id == class_id)
            .group_by(Opportunity.id)
        )
        return {opportunity_id: count for opportunity_id, count in result.all()}

    async def recent_bids(
        self, opportunity_id: str, within: Optional[timedelta] = None
    ) -> Sequence[Bid]:
        """Bids placed within the recent window, newest first."""
        within = within or timedelta(minutes=config.RECENT_BID_WINDOW_MINUTES)
        cutoff = datetime.now(timezone.utc) - within
        result = await self.db_session.execute(
            select(Bid)
            .where(Bid.opportunity_id == opportunity_id, Bid.created_at >= cutoff)
            .order_by(Bid.created_at.desc())
        )
        return result.scalars().all()

    async def students_with_bids(self, student_ids: Sequence[str]) -> set:
        """Subset of ``student_ids`` that have at least one bid."""
        if not student_ids:
            return set()
        result = await self.db_session.execute(
            select(Bid.student_id).where(Bid.student_id.in_(student_ids)).distinct()
        )
        return set(result.scalars().all())

    async def release_token(
        self,
        student_id: str,
        opportunity_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> BidResult:
        """
        Withdraw a student's bid and give their token back (admin only).

        Refused while the student still holds a bid elsewhere, so a restored
        token never sits next to a recorded bid.
        """
        student = await Student.get_by_id(self.db_session, student_id)
        if not student:
            return _failure(ErrorCode.NOT_FOUND, "Student not found")

        try:
            withdrawn = 0
            if opportunity_id:
                result = await self.db_session.execute(
                    delete(Bid).where(
                        Bid.student_id == student_id, Bid.opportunity_id == opportunity_id
                    )
                )
                withdrawn = result.rowcount or 0

            if await student.has_any_bid(self.db_session):
                await self.db_session.rollback()
                return _failure(
                    ErrorCode.TOKEN_UNAVAILABLE,
                    "Student still holds a bid; withdraw it before restoring the token",
                )

            restored = await self.ledger.restore(
                student_id,
                reason=TokenReason.ADMIN_RESTORE,
                opportunity_id=opportunity_id,
                note=note,
            )
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Token release failed for student {student_id}: {e}", exc_info=True)
            return _failure(ErrorCode.PERSISTENCE_ERROR, "Could not restore token")

        set_committed_value(student, "tokens_remaining", restored.tokens_remaining)
        logger.info(
            f"Released token for student {student_id} "
            f"(withdrew {withdrawn} bid(s), tokens={restored.tokens_remaining})"
        )
        channels = [class_channel(student.class_id), student_channel(student_id)]
        if withdrawn:
            await self.notifier.publish(
                channels + [opportunity_channel(opportunity_id)],
                Deleted("bids", f"{student_id}:{opportunity_id}"),
            )
        await self.notifier.publish(
            channels, Updated("students", StudentResponse.model_validate(student))
        )
        return BidResult(success=True, student=student)
