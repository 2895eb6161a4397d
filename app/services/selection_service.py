"""Draw, store, verify and reset selections for an opportunity."""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditAction, AuditLog, AuditStatus
from app.models.bid import Bid
from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.models.selection import Selection
from app.models.student import Student
from app.models.token_history import TokenReason
from app.services.bid_registry import BidRegistry
from app.services.notifications import (
    ChangeNotifier,
    Deleted,
    Inserted,
    class_channel,
    notifier as default_notifier,
    opportunity_channel,
)
from app.services.selection_engine import SelectionResult, engine_for_seed
from app.services.token_ledger import TokenLedger, TokenRestorePolicy
from core.exceptions.base import ErrorCode
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DrawResult:
    """A persisted draw."""

    success: bool
    opportunity_id: str
    selection: Optional[SelectionResult] = None
    seed: Optional[str] = None
    drawn_at: Optional[datetime] = None
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


@dataclass
class ResetResult:
    success: bool
    opportunity_id: str
    cleared_selections: int = 0
    restored_students: List[str] = field(default_factory=list)
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


class SelectionService:
    """
    Admin-side selection workflow.

    Each draw uses a fresh random seed that is stored with the opportunity
    together with the bidder ids it ran over, so the draw can later be
    replayed and checked against the stored winners.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        notifier: Optional[ChangeNotifier] = None,
        seed_factory: Callable[[], str] = lambda: secrets.token_hex(16),
    ):
        self.db_session = db_session
        self.registry = BidRegistry(db_session, notifier=notifier)
        self.ledger = TokenLedger(db_session)
        self.notifier = notifier or default_notifier
        self.seed_factory = seed_factory

    async def _load(self, opportunity_id: str):
        opportunity = await Opportunity.get_by_id(self.db_session, opportunity_id)
        if not opportunity:
            return None, None
        class_ = await Class.get_by_id(self.db_session, opportunity.class_id)
        return opportunity, class_

    async def run_draw(self, opportunity_id: str) -> DrawResult:
        """Draw winners from the current bidders and replace stored selections."""
        opportunity, class_ = await self._load(opportunity_id)
        if not opportunity:
            return DrawResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.NOT_FOUND, message="Opportunity not found",
            )

        bidders = await self.registry.bids_for(opportunity_id)
        capacity = opportunity.effective_capacity(class_.capacity)
        seed = self.seed_factory()
        selection = engine_for_seed(seed).select(bidders, capacity)
        if not selection.success:
            await self.db_session.rollback()
            logger.warning(f"Draw rejected for {opportunity_id}: {selection.message}")
            return DrawResult(
                success=False, opportunity_id=opportunity_id, selection=selection,
                error=selection.error, message=selection.message,
            )

        drawn_at = datetime.now(timezone.utc)
        try:
            await self.db_session.execute(
                delete(Selection).where(Selection.opportunity_id == opportunity_id)
            )
            for position, winner in enumerate(selection.winners):
                self.db_session.add(
                    Selection(
                        opportunity_id=opportunity_id,
                        student_id=winner.id,
                        position=position,
                        selected_at=drawn_at,
                    )
                )
            opportunity.draw_seed = seed
            opportunity.drawn_at = drawn_at
            opportunity.draw_pool = [b.id for b in bidders]
            self.db_session.add(
                AuditLog(
                    class_id=opportunity.class_id,
                    table_name="selections",
                    action=AuditAction.DRAW,
                    status=AuditStatus.SUCCESS,
                    details={
                        "opportunity_id": opportunity_id,
                        "bidders": len(bidders),
                        "capacity": capacity,
                        "winners": selection.winner_ids,
                    },
                )
            )
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Failed to store draw for {opportunity_id}: {e}", exc_info=True)
            return DrawResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.PERSISTENCE_ERROR, message="Could not store selection",
            )

        logger.info(
            f"Draw for {opportunity_id}: {len(selection.winners)} of {len(bidders)} "
            f"bidders selected (capacity {capacity}, randomized={selection.randomized})"
        )
        await self.notifier.publish(
            [class_channel(opportunity.class_id), opportunity_channel(opportunity_id)],
            Inserted("selections", {"opportunity_id": opportunity_id, "winners": selection.winner_ids}),
        )
        return DrawResult(
            success=True, opportunity_id=opportunity_id, selection=selection,
            seed=seed, drawn_at=drawn_at,
        )

    async def selected_for(self, opportunity_id: str) -> List[Student]:
        """Stored winners in draw order."""
        result = await self.db_session.execute(
            select(Student)
            .join(Selection, Selection.student_id == Student.id)
            .where(Selection.opportunity_id == opportunity_id)
            .order_by(Selection.position)
        )
        return list(result.scalars().all())

    async def _stored_pool(self, opportunity: Opportunity) -> Optional[List[Student]]:
        """Students the stored draw ran over, in their original order."""
        pool = opportunity.draw_pool or []
        if not pool:
            return []
        result = await self.db_session.execute(select(Student).where(Student.id.in_(pool)))
        by_id = {s.id: s for s in result.scalars().all()}
        if len(by_id) != len(set(pool)):
            return None
        return [by_id[student_id] for student_id in pool]

    async def replay_draw(self, opportunity_id: str) -> DrawResult:
        """Re-run the stored draw from its seed over the bidders it was drawn from."""
        opportunity, class_ = await self._load(opportunity_id)
        if not opportunity:
            return DrawResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.NOT_FOUND, message="Opportunity not found",
            )
        if not opportunity.draw_seed or opportunity.draw_pool is None:
            return DrawResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.NOT_FOUND, message="No draw has been run for this opportunity",
            )

        bidders = await self._stored_pool(opportunity)
        if bidders is None:
            return DrawResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.DRAW_MISMATCH,
                message="Students from the stored draw no longer exist",
            )

        selection = engine_for_seed(opportunity.draw_seed).select(
            bidders, opportunity.effective_capacity(class_.capacity)
        )
        return DrawResult(
            success=selection.success,
            opportunity_id=opportunity_id,
            selection=selection,
            seed=opportunity.draw_seed,
            drawn_at=opportunity.drawn_at,
            error=selection.error,
            message=selection.message,
        )

    async def replay_verified(self, opportunity_id: str) -> DrawResult:
        """
        Replay the stored draw and check it against the stored winners.

        Fails with DRAW_MISMATCH when the replay names other winners, e.g.
        after the selections were edited or the capacity changed.
        """
        replay = await self.replay_draw(opportunity_id)
        if not replay.success:
            return replay

        stored = [s.id for s in await self.selected_for(opportunity_id)]
        if replay.selection.winner_ids != stored:
            logger.warning(f"Stored selection for {opportunity_id} does not match its draw")
            return DrawResult(
                success=False, opportunity_id=opportunity_id, seed=replay.seed,
                drawn_at=replay.drawn_at, error=ErrorCode.DRAW_MISMATCH,
                message="Stored selection does not match its draw",
            )
        return replay

    async def verify_draw(self, opportunity_id: str) -> bool:
        """False when there is no stored draw or the stored winners disagree with it."""
        return (await self.replay_verified(opportunity_id)).success

    async def reset(
        self,
        opportunity_id: str,
        restore_tokens: TokenRestorePolicy = TokenRestorePolicy.NONE,
    ) -> ResetResult:
        """
        Clear an opportunity's selections.

        With a restore policy, the affected bidders also lose their bid on this
        opportunity and get their token back, so no student ends up holding a
        token while a bid of theirs is still recorded.
        """
        opportunity = await Opportunity.get_by_id(self.db_session, opportunity_id)
        if not opportunity:
            return ResetResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.NOT_FOUND, message="Opportunity not found",
            )

        try:
            winner_ids = {s.id for s in await self.selected_for(opportunity_id)}
            bidders = await self.registry.bids_for(opportunity_id)
            if restore_tokens == TokenRestorePolicy.ALL_BIDDERS:
                to_restore = [b.id for b in bidders]
            elif restore_tokens == TokenRestorePolicy.NON_WINNERS:
                to_restore = [b.id for b in bidders if b.id not in winner_ids]
            else:
                to_restore = []

            cleared = await self.db_session.execute(
                delete(Selection).where(Selection.opportunity_id == opportunity_id)
            )
            if to_restore:
                await self.db_session.execute(
                    delete(Bid).where(
                        Bid.opportunity_id == opportunity_id,
                        Bid.student_id.in_(to_restore),
                    )
                )
                # Bidders come from the bids join, so every student exists
                for student_id in to_restore:
                    await self.ledger.restore(
                        student_id,
                        reason=TokenReason.SELECTION_RESET,
                        opportunity_id=opportunity_id,
                    )

            opportunity.draw_seed = None
            opportunity.drawn_at = None
            opportunity.draw_pool = None
            self.db_session.add(
                AuditLog(
                    class_id=opportunity.class_id,
                    table_name="selections",
                    action=AuditAction.RESET,
                    status=AuditStatus.SUCCESS,
                    details={
                        "opportunity_id": opportunity_id,
                        "policy": restore_tokens.value,
                        "restored": to_restore,
                    },
                )
            )
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Selection reset failed for {opportunity_id}: {e}", exc_info=True)
            return ResetResult(
                success=False, opportunity_id=opportunity_id,
                error=ErrorCode.PERSISTENCE_ERROR, message="Could not reset selection",
            )

        logger.info(
            f"Reset selections for {opportunity_id} (policy={restore_tokens.value}, "
            f"restored={len(to_restore)})"
        )
        await self.notifier.publish(
            [class_channel(opportunity.class_id), opportunity_channel(opportunity_id)],
            Deleted("selections", opportunity_id),
        )
        return ResetResult(
            success=True,
            opportunity_id=opportunity_id,
            cleared_selections=cleared.rowcount or 0,
            restored_students=to_restore,
        )
