"""Server-sent change events for live bidding views."""

import json

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.models.student import Student
from app.services.notifications import (
    class_channel,
    event_payload,
    notifier,
    opportunity_channel,
    student_channel,
)
from core.db import get_db
from core.exceptions.base import NotFoundException
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Events"])


def event_stream(channel: str) -> StreamingResponse:
    async def events():
        logger.debug(f"Listener attached to {channel}")
        stream = notifier.listen(channel)
        try:
            async for event in stream:
                payload = event_payload(event)
                yield f"event: {payload['type']}\ndata: {json.dumps(payload)}\n\n"
        finally:
            await stream.aclose()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/classes/{class_id}/events")
async def class_events(
    class_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    """Bids, student token changes and draws for a whole class."""
    if not await Class.get_by_id(db_session, class_id):
        raise NotFoundException(message="Class not found")
    return event_stream(class_channel(class_id))


@router.get("/opportunities/{opportunity_id}/events")
async def opportunity_events(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    if not await Opportunity.get_by_id(db_session, opportunity_id):
        raise NotFoundException(message="Opportunity not found")
    return event_stream(opportunity_channel(opportunity_id))


@router.get("/students/{student_id}/events")
async def student_events(
    student_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    if not await Student.get_by_id(db_session, student_id):
        raise NotFoundException(message="Student not found")
    return event_stream(student_channel(student_id))
