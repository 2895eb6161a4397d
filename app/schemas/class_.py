from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field, field_validator

from app.schemas.base import BaseSchema


class ClassCreate(BaseSchema):
    """Schema for creating a new class."""

    name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=1, max_length=128, description="Class password students use to bid")
    reward_title: Optional[str] = Field(None, max_length=200)
    reward_description: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0, description="Default seats per opportunity")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class ClassResponse(BaseSchema):
    """Schema for class response."""

    id: str
    name: str
    reward_title: str
    reward_description: Optional[str]
    capacity: int
    created_at: datetime
    updated_at: datetime


class ClassListResponse(BaseSchema):
    """Schema for class list response."""

    items: List[ClassResponse]
    total: int


class DeletedCounts(BaseSchema):
    """Per-table row counts removed by a class deletion."""

    students: int = 0
    opportunities: int = 0
    bids: int = 0
    selections: int = 0
    token_history: int = 0
    audit_logs: int = 0


class DeletionPreviewResponse(BaseSchema):
    """Rows that a class deletion would remove."""

    class_id: str
    class_name: str
    record_counts: DeletedCounts


class ClassDeletionResponse(BaseSchema):
    """Outcome of an atomic class deletion."""

    success: bool
    class_id: str
    class_name: Optional[str] = None
    deleted_counts: DeletedCounts
    audit_log_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime


class BidCountsResponse(BaseSchema):
    """Bid totals per opportunity for a class."""

    class_id: str
    counts: Dict[str, int]
