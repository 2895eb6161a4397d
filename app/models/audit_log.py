"""Audit log for administrative operations on classes."""

import enum
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    DELETE = "DELETE"
    DRAW = "DRAW"
    RESET = "RESET"


class AuditStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class AuditLog(Base):
    """Audit row; class_id is cleared when the row outlives its class."""

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    # Not a foreign key: deletion audits must survive the class they describe
    class_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, native_enum=False), nullable=False
    )
    status: Mapped[AuditStatus] = mapped_column(
        Enum(AuditStatus, native_enum=False), nullable=False, default=AuditStatus.SUCCESS
    )
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
