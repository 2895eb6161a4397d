from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_lifecycle
from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.schemas.opportunity import (
    OpportunityCreate,
    OpportunityListResponse,
    OpportunityResponse,
    OpportunityUpdate,
)
from app.services import time_window
from app.services.bid_registry import BidRegistry
from app.services.class_lifecycle import ClassLifecycleCoordinator
from core.db import get_db
from core.exceptions.base import NotFoundException, exception_for
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Opportunities"])


async def opportunity_to_response(
    opportunity: Opportunity,
    db_session: AsyncSession,
    class_obj: Class = None,
    bid_count: int = None,
) -> OpportunityResponse:
    """Convert Opportunity model to response with its phase and bid count."""
    if class_obj is None:
        class_obj = await Class.get_by_id(db_session, opportunity.class_id)
    if bid_count is None:
        bid_count = await BidRegistry(db_session).bid_count(opportunity.id)

    return OpportunityResponse(
        id=opportunity.id,
        class_id=opportunity.class_id,
        title=opportunity.title,
        description=opportunity.description,
        event_date=time_window.parse_date(opportunity.event_date, "event_date"),
        bid_open_date=(
            time_window.parse_date(opportunity.bid_open_date, "bid_open_date")
            if opportunity.bid_open_date
            else None
        ),
        effective_open_date=time_window.effective_open_date(
            opportunity.event_date, opportunity.bid_open_date
        ),
        capacity=opportunity.capacity,
        effective_capacity=opportunity.effective_capacity(class_obj.capacity),
        phase=time_window.phase(opportunity.event_date, opportunity.bid_open_date),
        bid_count=bid_count,
        drawn_at=opportunity.drawn_at,
        created_at=opportunity.created_at,
    )


@router.get("/classes/{class_id}/opportunities", response_model=OpportunityListResponse)
async def list_opportunities(
    class_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> OpportunityListResponse:
    """
    List a class's opportunities with their current phase.

    Public endpoint - phases are computed at request time.
    """
    class_obj = await Class.get_by_id(db_session, class_id)
    if not class_obj:
        raise NotFoundException(message="Class not found")

    opportunities = await Opportunity.get_by_class(db_session, class_id)
    counts = await BidRegistry(db_session).bid_counts_for_class(class_id)
    items = [
        await opportunity_to_response(o, db_session, class_obj, counts.get(o.id, 0))
        for o in opportunities
    ]
    return OpportunityListResponse(items=items, total=len(items))


@router.post("/classes/{class_id}/opportunities", response_model=OpportunityResponse)
async def create_opportunity(
    class_id: str,
    data: OpportunityCreate,
    db_session: AsyncSession = Depends(get_db),
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> OpportunityResponse:
    """
    Create a bid opportunity.

    Requires the admin key. Without ``bid_open_date`` the window opens a week
    before the event.
    """
    logger.info(f"Create opportunity request for class {class_id}: {data.title}")
    result = await lifecycle.create_opportunity(class_id, data)
    if not result.success:
        raise exception_for(result.error, result.message)
    return await opportunity_to_response(result.opportunity, db_session, bid_count=0)


@router.get("/opportunities/{opportunity_id}", response_model=OpportunityResponse)
async def get_opportunity(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> OpportunityResponse:
    opportunity = await Opportunity.get_by_id(db_session, opportunity_id)
    if not opportunity:
        raise NotFoundException(message="Opportunity not found")
    return await opportunity_to_response(opportunity, db_session)


@router.put("/opportunities/{opportunity_id}", response_model=OpportunityResponse)
async def update_opportunity(
    opportunity_id: str,
    data: OpportunityUpdate,
    db_session: AsyncSession = Depends(get_db),
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> OpportunityResponse:
    """Update an opportunity. Requires the admin key."""
    logger.info(f"Update opportunity request: {opportunity_id}")
    result = await lifecycle.update_opportunity(opportunity_id, data)
    if not result.success:
        raise exception_for(result.error, result.message)
    return await opportunity_to_response(result.opportunity, db_session)


@router.delete("/opportunities/{opportunity_id}")
async def delete_opportunity(
    opportunity_id: str,
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> dict:
    """Delete an opportunity with its bids and selections. Requires the admin key."""
    logger.info(f"Delete opportunity request: {opportunity_id}")
    result = await lifecycle.delete_opportunity(opportunity_id)
    if not result.success:
        raise exception_for(result.error, result.message)
    return {
        "message": "Opportunity deleted successfully",
        "deleted_counts": result.deleted_counts,
    }
