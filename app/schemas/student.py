"""Student-related schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import EmailStr, Field, computed_field, field_validator

from app.models.token_history import TokenReason
from app.schemas.base import BaseSchema


class StudentImportRow(BaseSchema):
    """One validated row produced by the roster import."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    student_number: Optional[str] = Field(None, max_length=50)

    @field_validator("name", "student_number")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class StudentImportRequest(BaseSchema):
    """Bulk student import."""

    students: List[StudentImportRow] = Field(..., min_length=1)


class StudentResponse(BaseSchema):
    """Student response."""

    id: str
    class_id: str
    name: str
    email: str
    student_number: Optional[str] = None
    tokens_remaining: int
    has_bid: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def has_used_token(self) -> bool:
        return self.tokens_remaining <= 0


class SkippedStudentRow(BaseSchema):
    """Import row that was not created, with the reason."""

    row: int
    email: str
    student_number: Optional[str] = None
    reason: str


class StudentImportResponse(BaseSchema):
    """Result of a bulk import."""

    created: List[StudentResponse]
    skipped: List[SkippedStudentRow]


class StudentListResponse(BaseSchema):
    """List of students."""

    items: List[StudentResponse]
    total: int


class TokenStatusResponse(BaseSchema):
    """Token balance after a ledger operation."""

    student_id: str
    tokens_remaining: int


class TokenHistoryEntry(BaseSchema):
    """One change to a student's token balance."""

    id: str
    opportunity_id: Optional[str] = None
    delta: int
    reason: TokenReason
    note: Optional[str] = None
    created_at: datetime


class TokenHistoryResponse(BaseSchema):
    """A student's token balance with the changes that led to it, oldest first."""

    student_id: str
    tokens_remaining: int
    items: List[TokenHistoryEntry]
