from typing import Optional

from fastapi import Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.bid_registry import BidRegistry
from app.services.class_lifecycle import ClassLifecycleCoordinator
from app.services.selection_service import SelectionService
from app.utils.security import verify_admin_key
from core.db import get_db
from core.exceptions.base import ForbiddenException, UnauthorizedException
from core.logging import get_logger

logger = get_logger(__name__)

admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


async def get_current_admin(
    admin_key: Optional[str] = Depends(admin_key_header),
) -> str:
    """Require the administrator key on the request."""
    if not admin_key:
        raise UnauthorizedException(message="Not authenticated")

    if not verify_admin_key(admin_key):
        logger.warning("Rejected request with invalid admin key")
        raise ForbiddenException(message="Admin access required")

    return "admin"


async def get_bid_registry(
    db_session: AsyncSession = Depends(get_db),
) -> BidRegistry:
    return BidRegistry(db_session)


async def get_selection_service(
    db_session: AsyncSession = Depends(get_db),
) -> SelectionService:
    return SelectionService(db_session)


async def get_lifecycle(
    db_session: AsyncSession = Depends(get_db),
) -> ClassLifecycleCoordinator:
    return ClassLifecycleCoordinator(db_session)
