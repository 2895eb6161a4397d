import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Ensure critical settings exist before the app/config modules import.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./dev.db")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-change-me-please")

from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.models.student import Student
from app.utils.security import hash_password
from core.config import config
from core.db import get_db
from core.db.base import Base
from core.db.session import enable_sqlite_foreign_keys
from main import app

# Use SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

CLASS_PASSWORD = "open-sesame"

engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
event.listen(engine.sync_engine, "connect", enable_sqlite_foreign_keys)
TestSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create and drop all tables for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for testing."""
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for testing."""

    async def override_get_db():
        async with TestSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    """Headers carrying the configured admin key."""
    return {"X-Admin-Key": config.ADMIN_API_KEY}


@pytest.fixture
async def test_class(db_session: AsyncSession) -> Class:
    """Create a class with two seats per opportunity."""
    class_obj = Class(
        name="Intro to Databases",
        password_hash=hash_password(CLASS_PASSWORD),
        reward_title="Dinner with Professor",
        reward_description="Dinner and discussion",
        capacity=2,
    )
    db_session.add(class_obj)
    await db_session.commit()
    await db_session.refresh(class_obj)
    return class_obj


@pytest.fixture
async def create_students(db_session: AsyncSession, test_class: Class):
    """Factory fixture to add students to the test class."""

    async def _create_students(count: int, class_id: str = None) -> List[Student]:
        students = [
            Student(
                class_id=class_id or test_class.id,
                name=f"Student {i:02d}",
                email=f"student{i:02d}@example.edu",
                student_number=f"S{i:04d}",
                tokens_remaining=1,
            )
            for i in range(count)
        ]
        db_session.add_all(students)
        await db_session.commit()
        for student in students:
            await db_session.refresh(student)
        return students

    return _create_students


@pytest.fixture
async def create_opportunity(db_session: AsyncSession, test_class: Class):
    """Factory fixture for opportunities relative to now."""

    async def _create_opportunity(
        title: str = "Dinner",
        event_in: timedelta = timedelta(days=3),
        opens_in: timedelta = None,
        capacity: int = None,
        class_id: str = None,
    ) -> Opportunity:
        now = datetime.now(timezone.utc)
        opportunity = Opportunity(
            class_id=class_id or test_class.id,
            title=title,
            event_date=now + event_in,
            bid_open_date=now + opens_in if opens_in is not None else None,
            capacity=capacity,
        )
        db_session.add(opportunity)
        await db_session.commit()
        await db_session.refresh(opportunity)
        return opportunity

    return _create_opportunity


@pytest.fixture
async def open_opportunity(create_opportunity) -> Opportunity:
    """An opportunity currently open for bidding."""
    return await create_opportunity(title="Open dinner", opens_in=timedelta(days=-1))


@pytest.fixture
async def upcoming_opportunity(create_opportunity) -> Opportunity:
    """An opportunity whose window has not opened yet."""
    return await create_opportunity(title="Upcoming dinner", event_in=timedelta(days=30))


@pytest.fixture
async def past_opportunity(create_opportunity) -> Opportunity:
    """An opportunity whose event has already happened."""
    return await create_opportunity(
        title="Past dinner", event_in=timedelta(days=-1), opens_in=timedelta(days=-10)
    )
