from core.db.base import Base
from core.db.mixins import CreatedAtMixin, TimestampMixin, utcnow
from core.db.session import async_session_factory, engine, get_db

__all__ = [
    "Base",
    "TimestampMixin",
    "CreatedAtMixin",
    "utcnow",
    "async_session_factory",
    "engine",
    "get_db",
]
