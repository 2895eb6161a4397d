"""Draw and selection endpoints."""

import asyncio

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_admin, get_selection_service
from api.v1.students import students_to_response
from app.models.opportunity import Opportunity
from app.schemas.bid import (
    DrawResponse,
    DrawVerificationResponse,
    RevealStepResponse,
    SelectionListResponse,
    SelectionResetRequest,
    SelectionResetResponse,
)
from app.services.selection_engine import RevealStep, play_reveal
from app.services.selection_service import SelectionService
from core.config import config
from core.db import get_db
from core.exceptions.base import NotFoundException, exception_for
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/opportunities", tags=["Selections"])


def step_to_response(step: RevealStep) -> RevealStepResponse:
    return RevealStepResponse(
        index=step.index,
        order=list(step.order),
        highlighted=list(step.highlighted),
        is_complete=step.is_complete,
        winners=list(step.winners),
    )


@router.post("/{opportunity_id}/draw", response_model=DrawResponse)
async def run_draw(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
    service: SelectionService = Depends(get_selection_service),
    _: str = Depends(get_current_admin),
) -> DrawResponse:
    """
    Draw winners among the current bidders.

    Requires the admin key. Replaces any earlier selection. The response
    carries the reveal steps so a client can animate the outcome.
    """
    logger.info(f"Draw request for opportunity {opportunity_id}")
    result = await service.run_draw(opportunity_id)
    if not result.success:
        raise exception_for(result.error, result.message)

    selection = result.selection
    return DrawResponse(
        opportunity_id=opportunity_id,
        capacity=selection.capacity,
        randomized=selection.randomized,
        seed=result.seed,
        drawn_at=result.drawn_at,
        winners=await students_to_response(selection.winners, db_session),
        steps=[step_to_response(step) for step in selection.reveal()],
    )


@router.get("/{opportunity_id}/selections", response_model=SelectionListResponse)
async def list_selections(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
    service: SelectionService = Depends(get_selection_service),
) -> SelectionListResponse:
    """Stored winners in draw order."""
    opportunity = await Opportunity.get_by_id(db_session, opportunity_id)
    if not opportunity:
        raise NotFoundException(message="Opportunity not found")

    winners = await service.selected_for(opportunity_id)
    return SelectionListResponse(
        opportunity_id=opportunity_id,
        items=await students_to_response(winners, db_session),
        total=len(winners),
        drawn_at=opportunity.drawn_at,
    )


@router.get("/{opportunity_id}/draw/verify", response_model=DrawVerificationResponse)
async def verify_draw(
    opportunity_id: str,
    db_session: AsyncSession = Depends(get_db),
    service: SelectionService = Depends(get_selection_service),
    _: str = Depends(get_current_admin),
) -> DrawVerificationResponse:
    """Replay the stored seed and check it reproduces the stored winners."""
    if not await Opportunity.get_by_id(db_session, opportunity_id):
        raise NotFoundException(message="Opportunity not found")
    return DrawVerificationResponse(
        opportunity_id=opportunity_id,
        verified=await service.verify_draw(opportunity_id),
    )


@router.post("/{opportunity_id}/selections/reset", response_model=SelectionResetResponse)
async def reset_selections(
    opportunity_id: str,
    data: SelectionResetRequest,
    service: SelectionService = Depends(get_selection_service),
    _: str = Depends(get_current_admin),
) -> SelectionResetResponse:
    """
    Clear the stored selection.

    Requires the admin key. ``restore_tokens`` decides which bidders get their
    token back; their bids on this opportunity are withdrawn with it.
    """
    logger.info(
        f"Reset request for opportunity {opportunity_id} (restore={data.restore_tokens.value})"
    )
    result = await service.reset(opportunity_id, data.restore_tokens)
    if not result.success:
        raise exception_for(result.error, result.message)
    return SelectionResetResponse(
        opportunity_id=opportunity_id,
        cleared_selections=result.cleared_selections,
        restored_students=result.restored_students,
    )


@router.get("/{opportunity_id}/draw/reveal")
async def stream_reveal(
    opportunity_id: str,
    service: SelectionService = Depends(get_selection_service),
) -> StreamingResponse:
    """
    Stream the stored draw's reveal frames as newline-delimited JSON.

    Frames are paced like the live animation and end with the stored winners;
    a stored selection that no longer matches its draw is refused with 409.
    Disconnecting stops playback; the stored winners are unaffected.
    """
    replay = await service.replay_verified(opportunity_id)
    if not replay.success:
        raise exception_for(replay.error, replay.message)
    selection = replay.selection

    async def frames():
        queue: asyncio.Queue = asyncio.Queue()
        playback = asyncio.create_task(
            play_reveal(
                selection,
                queue.put_nowait,
                step_delay=config.REVEAL_STEP_DELAY_SECONDS,
                initial_delay=config.REVEAL_INITIAL_DELAY_SECONDS,
            )
        )
        try:
            while True:
                step = await queue.get()
                yield step_to_response(step).model_dump_json() + "\n"
                if step.is_complete:
                    break
        finally:
            playback.cancel()

    return StreamingResponse(frames(), media_type="application/x-ndjson")
