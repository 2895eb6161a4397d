"""Bid opportunity model (e.g. one dinner slot)."""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.class_ import Class


class Opportunity(Base, TimestampMixin):
    """Capacity-limited, time-windowed event students can bid on."""

    __tablename__ = "opportunities"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bidding window is [bid_open_date, event_date)
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    bid_open_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # falls back to class capacity

    # Last draw, kept so the result can be replayed and verified
    draw_seed: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    drawn_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Bidder ids in submission order when the draw ran
    draw_pool: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    class_: Mapped["Class"] = relationship("Class", back_populates="opportunities")

    def effective_capacity(self, class_capacity: int) -> int:
        """Seats for this opportunity, falling back to the class default."""
        return self.capacity if self.capacity is not None else class_capacity

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Opportunity"]:
        """Get opportunity by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_class(
        cls, db_session: AsyncSession, class_id: str
    ) -> Sequence["Opportunity"]:
        """Opportunities for a class in event order."""
        result = await db_session.execute(
            select(cls).where(cls.class_id == class_id).order_by(cls.event_date, cls.title)
        )
        return result.scalars().all()
