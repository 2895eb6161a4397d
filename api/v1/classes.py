from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_bid_registry, get_current_admin, get_lifecycle
from app.models.class_ import Class
from app.schemas.class_ import (
    BidCountsResponse,
    ClassCreate,
    ClassDeletionResponse,
    ClassListResponse,
    ClassResponse,
    DeletedCounts,
    DeletionPreviewResponse,
)
from app.services.bid_registry import BidRegistry
from app.services.class_lifecycle import ClassLifecycleCoordinator
from core.db import get_db
from core.exceptions.base import ErrorCode, NotFoundException, exception_for
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/classes", tags=["Classes"])


@router.get("/", response_model=ClassListResponse)
async def list_classes(
    db_session: AsyncSession = Depends(get_db),
) -> ClassListResponse:
    """
    List all classes.

    Public endpoint - no authentication required.
    """
    classes = await Class.get_all(db_session)
    logger.info(f"Found {len(classes)} classes")
    return ClassListResponse(
        items=[ClassResponse.model_validate(c) for c in classes],
        total=len(classes),
    )


@router.get("/{class_id}", response_model=ClassResponse)
async def get_class(
    class_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> ClassResponse:
    """
    Get class details by ID.

    Public endpoint - no authentication required.
    """
    class_obj = await Class.get_by_id(db_session, class_id)
    if not class_obj:
        logger.warning(f"Class not found: {class_id}")
        raise NotFoundException(message="Class not found")
    return ClassResponse.model_validate(class_obj)


@router.post("/", response_model=ClassResponse)
async def create_class(
    data: ClassCreate,
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> ClassResponse:
    """
    Create a new, empty class.

    Requires the admin key. Reward texts and capacity fall back to the
    configured defaults.
    """
    logger.info(f"Create class request: {data.name}")
    result = await lifecycle.create_class(data)
    if not result.success:
        raise exception_for(result.error, result.message)
    return ClassResponse.model_validate(result.class_)


@router.get("/{class_id}/deletion-preview", response_model=DeletionPreviewResponse)
async def preview_class_deletion(
    class_id: str,
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> DeletionPreviewResponse:
    """Show how many records deleting the class would remove."""
    preview = await lifecycle.validate_class_for_deletion(class_id)
    if not preview.valid:
        raise exception_for(preview.error, preview.message)
    return DeletionPreviewResponse(
        class_id=preview.class_id,
        class_name=preview.class_name,
        record_counts=DeletedCounts(**preview.record_counts),
    )


@router.delete("/{class_id}", response_model=ClassDeletionResponse)
async def delete_class(
    class_id: str,
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> ClassDeletionResponse:
    """
    Delete a class and everything that belongs to it.

    Requires the admin key. All-or-nothing: on failure nothing is removed and
    the failure is recorded in the audit log.
    """
    logger.info(f"Delete class request: {class_id}")
    result = await lifecycle.delete_class_atomic(class_id)
    if not result.success and result.error == ErrorCode.NOT_FOUND:
        raise exception_for(result.error, result.message)

    response = ClassDeletionResponse(
        success=result.success,
        class_id=result.class_id,
        class_name=result.class_name,
        deleted_counts=DeletedCounts(**result.deleted_counts),
        audit_log_id=result.audit_log_id,
        error=result.message,
        timestamp=result.timestamp,
    )
    if not result.success:
        raise exception_for(result.error, result.message, data=response.model_dump(mode="json"))
    return response


@router.get("/{class_id}/bid-counts", response_model=BidCountsResponse)
async def get_bid_counts(
    class_id: str,
    db_session: AsyncSession = Depends(get_db),
    registry: BidRegistry = Depends(get_bid_registry),
) -> BidCountsResponse:
    """Bid totals per opportunity, for clients refreshing after missed events."""
    if not await Class.get_by_id(db_session, class_id):
        raise NotFoundException(message="Class not found")
    counts = await registry.bid_counts_for_class(class_id)
    return BidCountsResponse(class_id=class_id, counts=counts)
