from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_bid_registry, get_current_admin, get_lifecycle
from app.models.class_ import Class
from app.models.student import Student
from app.models.token_history import TokenHistory
from app.schemas.base import BaseSchema
from app.schemas.student import (
    SkippedStudentRow,
    StudentImportRequest,
    StudentImportResponse,
    StudentListResponse,
    StudentResponse,
    TokenHistoryEntry,
    TokenHistoryResponse,
    TokenStatusResponse,
)
from app.services.bid_registry import BidRegistry
from app.services.class_lifecycle import ClassLifecycleCoordinator
from core.db import get_db
from core.exceptions.base import NotFoundException, exception_for
from core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Students"])


class TokenRestoreRequest(BaseSchema):
    opportunity_id: Optional[str] = Field(None, description="Bid to withdraw before restoring")
    note: Optional[str] = Field(None, max_length=500)


async def students_to_response(
    students: Sequence[Student],
    db_session: AsyncSession,
) -> List[StudentResponse]:
    """Convert students to responses with their bid flag filled in."""
    registry = BidRegistry(db_session)
    with_bids = await registry.students_with_bids([s.id for s in students])
    return [
        StudentResponse.model_validate(s).model_copy(update={"has_bid": s.id in with_bids})
        for s in students
    ]


@router.post("/classes/{class_id}/students", response_model=StudentImportResponse)
async def import_students(
    class_id: str,
    data: StudentImportRequest,
    db_session: AsyncSession = Depends(get_db),
    lifecycle: ClassLifecycleCoordinator = Depends(get_lifecycle),
    _: str = Depends(get_current_admin),
) -> StudentImportResponse:
    """
    Add already-validated roster rows to a class.

    Requires the admin key. Rows that match an existing student (email and
    student number) are skipped and reported back.
    """
    logger.info(f"Import {len(data.students)} students into class {class_id}")
    result = await lifecycle.add_students(class_id, data.students)
    if not result.success:
        raise exception_for(result.error, result.message)

    return StudentImportResponse(
        created=await students_to_response(result.created, db_session),
        skipped=[
            SkippedStudentRow(
                row=s.row, email=s.email, student_number=s.student_number, reason=s.reason
            )
            for s in result.skipped
        ],
    )


@router.get("/classes/{class_id}/students", response_model=StudentListResponse)
async def list_students(
    class_id: str,
    db_session: AsyncSession = Depends(get_db),
    _: str = Depends(get_current_admin),
) -> StudentListResponse:
    """List the roster of a class with token and bid state."""
    if not await Class.get_by_id(db_session, class_id):
        raise NotFoundException(message="Class not found")

    students = await Student.get_by_class(db_session, class_id)
    items = await students_to_response(students, db_session)
    return StudentListResponse(items=items, total=len(items))


@router.get("/students/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: str,
    db_session: AsyncSession = Depends(get_db),
) -> StudentResponse:
    """Token and bid state for a single student."""
    student = await Student.get_by_id(db_session, student_id)
    if not student:
        raise NotFoundException(message="Student not found")
    return (await students_to_response([student], db_session))[0]


@router.post("/students/{student_id}/token/restore", response_model=TokenStatusResponse)
async def restore_token(
    student_id: str,
    data: TokenRestoreRequest,
    registry: BidRegistry = Depends(get_bid_registry),
    _: str = Depends(get_current_admin),
) -> TokenStatusResponse:
    """
    Give a student their token back.

    Requires the admin key. When ``opportunity_id`` is given the student's bid
    on it is withdrawn in the same transaction.
    """
    logger.info(f"Token restore request for student {student_id}")
    result = await registry.release_token(
        student_id, opportunity_id=data.opportunity_id, note=data.note
    )
    if not result.success:
        raise exception_for(result.error, result.message)

    return TokenStatusResponse(
        student_id=student_id, tokens_remaining=result.student.tokens_remaining
    )


@router.get("/students/{student_id}/token/history", response_model=TokenHistoryResponse)
async def get_token_history(
    student_id: str,
    db_session: AsyncSession = Depends(get_db),
    _: str = Depends(get_current_admin),
) -> TokenHistoryResponse:
    """Every spend and restore of a student's token. Requires the admin key."""
    student = await Student.get_by_id(db_session, student_id)
    if not student:
        raise NotFoundException(message="Student not found")

    entries = await TokenHistory.get_by_student(db_session, student_id)
    return TokenHistoryResponse(
        student_id=student_id,
        tokens_remaining=student.tokens_remaining,
        items=[TokenHistoryEntry.model_validate(e) for e in entries],
    )
