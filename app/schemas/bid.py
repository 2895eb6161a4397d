"""Bid and selection schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.base import BaseSchema
from app.schemas.student import StudentResponse
from app.services.token_ledger import TokenRestorePolicy


class BidCreate(BaseSchema):
    """Student bid submission."""

    student_id: str
    opportunity_id: str
    class_password: str = Field(..., min_length=1)


class BidResponse(BaseSchema):
    """A recorded bid."""

    id: str
    student_id: str
    opportunity_id: str
    created_at: datetime


class BidSubmissionResponse(BaseSchema):
    """Successful submission with the student's updated token state."""

    bid: BidResponse
    student: StudentResponse


class BidStatusResponse(BaseSchema):
    student_id: str
    opportunity_id: str
    has_bid: bool


class BidderListResponse(BaseSchema):
    """Bidders in submission order."""

    opportunity_id: str
    items: List[StudentResponse]
    total: int
    recent: List[str] = Field(default_factory=list, description="Student ids that bid recently")


class RevealStepResponse(BaseSchema):
    """One frame of the draw reveal animation."""

    index: int
    order: List[str]
    highlighted: List[str]
    is_complete: bool
    winners: List[str]


class DrawResponse(BaseSchema):
    """Draw outcome plus the steps to animate it."""

    opportunity_id: str
    capacity: int
    randomized: bool
    seed: Optional[str] = None
    drawn_at: Optional[datetime] = None
    winners: List[StudentResponse]
    steps: List[RevealStepResponse]


class SelectionListResponse(BaseSchema):
    opportunity_id: str
    items: List[StudentResponse]
    total: int
    drawn_at: Optional[datetime] = None


class DrawVerificationResponse(BaseSchema):
    opportunity_id: str
    verified: bool


class SelectionResetRequest(BaseSchema):
    restore_tokens: TokenRestorePolicy = Field(
        TokenRestorePolicy.NONE,
        description="Which bidders get their token back: none, non_winners or all_bidders",
    )


class SelectionResetResponse(BaseSchema):
    opportunity_id: str
    cleared_selections: int
    restored_students: List[str]
