"""Bid model: one student's interest in one opportunity."""

from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from sqlalchemy import ForeignKey, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, CreatedAtMixin

if TYPE_CHECKING:
    from app.models.opportunity import Opportunity
    from app.models.student import Student


class Bid(Base, CreatedAtMixin):
    """A recorded bid. Its existence implies the student's token was spent."""

    __tablename__ = "bids"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    student_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True
    )
    opportunity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=False, index=True
    )

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "opportunity_id",
            name="uq_bid_student_opportunity",
        ),
    )

    student: Mapped["Student"] = relationship("Student")
    opportunity: Mapped["Opportunity"] = relationship("Opportunity")

    @classmethod
    async def get_for_pair(
        cls, db_session: AsyncSession, student_id: str, opportunity_id: str
    ) -> Optional["Bid"]:
        result = await db_session.execute(
            select(cls).where(
                cls.student_id == student_id,
                cls.opportunity_id == opportunity_id,
            )
        )
        return result.scalars().first()
