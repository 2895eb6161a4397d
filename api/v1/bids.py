"""Bid submission and bidder listing endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_bid_registry
from api.v1.students import students_to_response
from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.schemas.bid import (
    BidCreate,
    BidderListResponse,
    BidResponse,
    BidStatusResponse,
    BidSubmissionResponse,
)
from app.schemas.student import StudentResponse
from app.services.bid_registry import BidRegistry
from app.utils.security import verify_password
from core.db import get_db
from core.exceptions.base import ForbiddenException, NotFoundException, exception_for
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Bids"])


@router.post("/bids/", response_model=BidSubmissionResponse)
async def submit_bid(
    data: BidCreate,
    db_session: AsyncSession = Depends(get_db),
    registry: BidRegistry = Depends(get_bid_registry),
) -> BidSubmissionResponse:
    """
    Place a student's bid on an opportunity.

    Students authenticate with the class password. Each student holds a single
    token; a successful bid spends it.
    """
    logger.info(f"Bid request: student={data.student_id}, opportunity={data.opportunity_id}")
    opportunity = await Opportunity.get_by_id(db_session, data.opportunity_id)
    if not opportunity:
        raise NotFoundException(message="Opportunity not found")

    class_obj = await Class.get_by_id(db_session, opportunity.class_id)
    if not verify_password(data.class_password, class_obj.password_hash):
        logger.warning(f"Invalid class password for bid by student {data.student_id}")
        raise ForbiddenException(message="Invalid class password")

    result = await registry.submit_bid(data.student_id, data.opportunity_id)
    if not result.success:
        logger.info(f"Bid rejected ({result.error.value}): {result.message}")
        raise exception_for(result.error, result.message)

    return BidSubmissionResponse(
        bid=BidResponse.model_validate(result.bid),
        student=StudentResponse.model_validate(result.student).model_copy(
            update={"has_bid": True}
        ),
    )


@router.get("/bids/status", response_model=BidStatusResponse)
async def get_bid_status(
    student_id: str = Query(...),
    opportunity_id: str = Query(...),
    registry: BidRegistry = Depends(get_bid_registry),
) -> BidStatusResponse:
    """Whether a student has bid on an opportunity."""
    return BidStatusResponse(
        student_id=student_id,
        opportunity_id=opportunity_id,
        has_bid=await registry.has_bid(student_id, opportunity_id),
    )


@router.get("/opportunities/{opportunity_id}/bidders", response_model=BidderListResponse)
async def list_bidders(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
    registry: BidRegistry = Depends(get_bid_registry),
) -> BidderListResponse:
    """
    Bidders on an opportunity in submission order.

    ``recent`` lists the students whose bids arrived in the last few minutes.
    """
    if not await Opportunity.get_by_id(db_session, opportunity_id):
        raise NotFoundException(message="Opportunity not found")

    bidders = await registry.bids_for(opportunity_id)
    recent = await registry.recent_bids(opportunity_id)
    return BidderListResponse(
        opportunity_id=opportunity_id,
        items=await students_to_response(bidders, db_session),
        total=len(bidders),
        recent=[b.student_id for b in recent],
    )
