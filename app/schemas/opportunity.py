"""Opportunity-related schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.schemas.base import BaseSchema
from app.services.time_window import BidPhase


class OpportunityCreate(BaseSchema):
    """Schema for creating a bid opportunity."""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    event_date: datetime
    bid_open_date: Optional[datetime] = Field(
        None, description="When bidding opens; defaults to a week before the event"
    )
    capacity: Optional[int] = Field(None, ge=0, description="Overrides the class default")


class OpportunityUpdate(BaseSchema):
    """Schema for updating a bid opportunity."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    bid_open_date: Optional[datetime] = None
    capacity: Optional[int] = Field(None, ge=0)


class OpportunityResponse(BaseSchema):
    """Opportunity response with its computed phase."""

    id: str
    class_id: str
    title: str
    description: Optional[str] = None
    event_date: datetime
    bid_open_date: Optional[datetime] = None
    effective_open_date: datetime
    capacity: Optional[int] = None
    effective_capacity: int
    phase: BidPhase
    bid_count: int = 0
    drawn_at: Optional[datetime] = None
    created_at: datetime


class OpportunityListResponse(BaseSchema):
    """List of opportunities."""

    items: List[OpportunityResponse]
    total: int
