"""Token ledger enforcing the single-use bid token per student."""

import enum
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.student import Student
from app.models.token_history import TokenHistory, TokenReason
from core.config import config
from core.exceptions.base import ErrorCode
from core.logging import get_logger

logger = get_logger(__name__)


class TokenRestorePolicy(str, enum.Enum):
    """Whose tokens come back when a draw is reset."""

    NONE = "none"
    NON_WINNERS = "non_winners"
    ALL_BIDDERS = "all_bidders"


@dataclass
class TokenResult:
    """Outcome of a ledger operation."""

    success: bool
    student_id: str
    tokens_remaining: Optional[int] = None
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


class TokenLedger:
    """
    Consume, check and restore student tokens.

    Every operation runs inside the caller's transaction and never commits,
    so a token spend and the bid it pays for succeed or fail together.
    """

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def is_available(self, student_id: str) -> bool:
        """Whether the student still holds an unspent token."""
        result = await self.db_session.execute(
            select(Student.tokens_remaining).where(Student.id == student_id)
        )
        remaining = result.scalar_one_or_none()
        return remaining is not None and remaining > 0

    async def consume(
        self, student_id: str, opportunity_id: Optional[str] = None
    ) -> TokenResult:
        """
        Spend one token.

        The decrement is a conditional UPDATE guarded by ``tokens_remaining > 0``
        so two concurrent spends by the same student cannot both succeed. A
        second call after a successful one fails with TOKEN_UNAVAILABLE.
        """
        stmt = (
            update(Student)
            .where(Student.id == student_id, Student.tokens_remaining > 0)
            .values(tokens_remaining=Student.tokens_remaining - 1)
        )
        result = await self.db_session.execute(stmt)

        row = (
            await self.db_session.execute(
                select(Student.tokens_remaining, Student.class_id).where(Student.id == student_id)
            )
        ).first()

        if result.rowcount == 0:
            if row is None:
                return TokenResult(
                    success=False,
                    student_id=student_id,
                    error=ErrorCode.NOT_FOUND,
                    message="Student not found",
                )
            logger.info(f"Token already used by student {student_id}")
            return TokenResult(
                success=False,
                student_id=student_id,
                tokens_remaining=0,
                error=ErrorCode.TOKEN_UNAVAILABLE,
                message="Token already used",
            )

        tokens_remaining, class_id = row
        self.db_session.add(
            TokenHistory(
                class_id=class_id,
                student_id=student_id,
                opportunity_id=opportunity_id,
                delta=-1,
                reason=TokenReason.BID,
            )
        )
        logger.debug(f"Consumed token for student {student_id}, remaining: {tokens_remaining}")
        return TokenResult(success=True, student_id=student_id, tokens_remaining=tokens_remaining)

    async def restore(
        self,
        student_id: str,
        reason: TokenReason = TokenReason.ADMIN_RESTORE,
        opportunity_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TokenResult:
        """
        Give a student their token back (administrative flows only).

        Gives back one token, never above the per-student allowance. Restoring
        a student whose token is unspent is a no-op and records no history.
        """
        result = await self.db_session.execute(
            select(Student)
            .where(Student.id == student_id)
            .execution_options(populate_existing=True)
        )
        student = result.scalars().first()
        if not student:
            return TokenResult(
                success=False,
                student_id=student_id,
                error=ErrorCode.NOT_FOUND,
                message="Student not found",
            )

        allowance = config.TOKENS_PER_STUDENT
        if student.tokens_remaining >= allowance:
            return TokenResult(
                success=True, student_id=student_id, tokens_remaining=student.tokens_remaining
            )

        delta = 1
        student.tokens_remaining = student.tokens_remaining + delta
        self.db_session.add(
            TokenHistory(
                class_id=student.class_id,
                student_id=student_id,
                opportunity_id=opportunity_id,
                delta=delta,
                reason=reason,
                note=note,
            )
        )
        await self.db_session.flush()
        logger.info(f"Restored token for student {student_id} ({reason.value})")
        return TokenResult(
            success=True, student_id=student_id, tokens_remaining=student.tokens_remaining
        )
