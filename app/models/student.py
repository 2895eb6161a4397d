"""Student model: a class member holding a single-use bid token."""

from typing import TYPE_CHECKING, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    exists,
    select,
)
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.class_ import Class


class Student(Base, TimestampMixin):
    """Student enrolled in exactly one class."""

    __tablename__ = "students"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    class_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)  # stored lower-cased
    student_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Token balance; zero means the student's single bid has been spent
    tokens_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "class_id",
            "email",
            "student_number",
            name="uq_student_class_email_number",
        ),
    )

    class_: Mapped["Class"] = relationship("Class", back_populates="students")

    @property
    def has_used_token(self) -> bool:
        return self.tokens_remaining <= 0

    @classmethod
    async def get_by_id(
        cls, db_session: AsyncSession, id: str
    ) -> Optional["Student"]:
        """Get student by ID."""
        result = await db_session.execute(select(cls).where(cls.id == id))
        return result.scalars().first()

    @classmethod
    async def get_by_class(
        cls, db_session: AsyncSession, class_id: str
    ) -> Sequence["Student"]:
        """Roster for a class, alphabetical."""
        result = await db_session.execute(
            select(cls).where(cls.class_id == class_id).order_by(cls.name, cls.email)
        )
        return result.scalars().all()

    @classmethod
    async def find_in_class(
        cls,
        db_session: AsyncSession,
        class_id: str,
        email: str,
        student_number: Optional[str],
    ) -> Optional["Student"]:
        """Look up a student by identity key (email is case-insensitive)."""
        conditions = [cls.class_id == class_id, cls.email == email.strip().lower()]
        if student_number:
            conditions.append(cls.student_number == student_number)
        else:
            conditions.append(cls.student_number.is_(None))
        result = await db_session.execute(select(cls).where(*conditions))
        return result.scalars().first()

    async def has_any_bid(self, db_session: AsyncSession) -> bool:
        """Whether the student has a bid on any opportunity."""
        from app.models.bid import Bid

        result = await db_session.execute(
            select(exists().where(Bid.student_id == self.id))
        )
        return bool(result.scalar())
