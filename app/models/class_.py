from typing import TYPE_CHECKING, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import Integer, String, Text, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.opportunity import Opportunity
    from app.models.student import Student


class Class(Base, TimestampMixin):
    """A class (course section) whose students bid on its opportunities."""

    __tablename__ = "classes"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    reward_title: Mapped[str] = mapped_column(String(200), nullable=False)
    reward_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Default seats per opportunity when the opportunity sets none
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    students: Mapped[List["Student"]] = relationship(
        "Student", back_populates="class_", passive_deletes=True
    )
    opportunities: Mapped[List["Opportunity"]] = relationship(
        "Opportunity", back_populates="class_", passive_deletes=True
    )

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Class"]:
        """Get class by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_name(
        cls, db_session: AsyncSession, name: str
    ) -> Optional["Class"]:
        """Get class by name (case-insensitive)."""
        result = await db_session.execute(
            select(cls).where(func.lower(cls.name) == name.strip().lower())
        )
        return result.scalars().first()

    @classmethod
    async def get_all(cls, db_session: AsyncSession) -> Sequence["Class"]:
        """List all classes, newest first."""
        result = await db_session.execute(
            select(cls).order_by(cls.created_at.desc(), cls.name)
        )
        return result.scalars().all()
