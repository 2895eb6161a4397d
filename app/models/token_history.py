"""Token history: an append-only trail of token consumption and restores."""

import enum
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, CreatedAtMixin


class TokenReason(str, enum.Enum):
    """Why a student's token balance changed."""

    BID = "bid"  # spent on a bid
    SELECTION_RESET = "selection_reset"  # given back when an admin reset a draw
    ADMIN_RESTORE = "admin_restore"  # manual correction


class TokenHistory(Base, CreatedAtMixin):
    """Track token balance changes per student."""

    __tablename__ = "token_history"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    opportunity_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)  # -1 spend, +1 restore
    reason: Mapped[TokenReason] = mapped_column(
        Enum(TokenReason, native_enum=False), nullable=False
    )
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @classmethod
    async def get_by_student(
        cls, db_session: AsyncSession, student_id: str
    ) -> Sequence["TokenHistory"]:
        result = await db_session.execute(
            select(cls).where(cls.student_id == student_id).order_by(cls.created_at)
        )
        return result.scalars().all()
