"""Class lifecycle: creation, roster import, opportunities and atomic deletion."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditAction, AuditLog, AuditStatus
from app.models.bid import Bid
from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.models.selection import Selection
from app.models.student import Student
from app.models.token_history import TokenHistory
from app.schemas.class_ import ClassCreate
from app.schemas.opportunity import OpportunityCreate, OpportunityUpdate
from app.schemas.student import StudentImportRow
from app.services import time_window
from app.services.time_window import InvalidDateError
from app.utils.security import hash_password
from core.config import config
from core.exceptions.base import ErrorCode
from core.logging import get_logger

logger = get_logger(__name__)

# Deletion order matters: children before parents
CASCADE_ORDER = (
    "selections",
    "bids",
    "token_history",
    "audit_logs",
    "opportunities",
    "students",
)


@dataclass
class ClassResult:
    success: bool
    class_: Optional[Class] = None
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


@dataclass
class DeletionPreview:
    """Whether a class can be deleted and how many rows would go with it."""

    valid: bool
    class_id: str
    class_name: Optional[str] = None
    record_counts: Dict[str, int] = field(default_factory=dict)
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


@dataclass
class DeletionResult:
    success: bool
    class_id: str
    timestamp: datetime
    class_name: Optional[str] = None
    deleted_counts: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(CASCADE_ORDER, 0))
    audit_log_id: Optional[str] = None
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


@dataclass
class SkippedRow:
    row: int
    email: str
    student_number: Optional[str]
    reason: str


@dataclass
class StudentImportResult:
    success: bool
    created: List[Student] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


@dataclass
class OpportunityResult:
    success: bool
    opportunity: Optional[Opportunity] = None
    deleted_counts: Dict[str, int] = field(default_factory=dict)
    error: Optional[ErrorCode] = None
    message: Optional[str] = None


class ClassLifecycleCoordinator:
    """Creates classes and their dependents, and deletes them as one unit."""

    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    # ============== Classes ==============

    async def create_class(self, data: ClassCreate) -> ClassResult:
        """Create an empty class (no students, no opportunities)."""
        logger.info(f"Creating class: {data.name}")
        if await Class.get_by_name(self.db_session, data.name):
            return ClassResult(
                success=False, error=ErrorCode.DUPLICATE_NAME,
                message=f"A class named '{data.name}' already exists",
            )

        class_obj = Class(
            name=data.name,
            password_hash=hash_password(data.password),
            reward_title=data.reward_title or config.DEFAULT_REWARD_TITLE,
            reward_description=(
                data.reward_description
                if data.reward_description is not None
                else config.DEFAULT_REWARD_DESCRIPTION
            ),
            capacity=data.capacity if data.capacity is not None else config.DEFAULT_CLASS_CAPACITY,
        )
        try:
            self.db_session.add(class_obj)
            await self.db_session.flush()
            self.db_session.add(
                AuditLog(
                    class_id=class_obj.id,
                    table_name="classes",
                    action=AuditAction.CREATE,
                    details={"class_name": class_obj.name, "capacity": class_obj.capacity},
                )
            )
            await self.db_session.commit()
        except IntegrityError:
            await self.db_session.rollback()
            return ClassResult(
                success=False, error=ErrorCode.DUPLICATE_NAME,
                message=f"A class named '{data.name}' already exists",
            )
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Failed to create class {data.name}: {e}", exc_info=True)
            return ClassResult(
                success=False, error=ErrorCode.PERSISTENCE_ERROR, message="Could not create class"
            )

        await self.db_session.refresh(class_obj)
        logger.info(f"Class created: {class_obj.id} (capacity {class_obj.capacity})")
        return ClassResult(success=True, class_=class_obj)

    async def _count_related(self, class_id: str) -> Dict[str, int]:
        opportunity_ids = select(Opportunity.id).where(Opportunity.class_id == class_id)
        queries = {
            "selections": select(func.count(Selection.id)).where(
                Selection.opportunity_id.in_(opportunity_ids)
            ),
            "bids": select(func.count(Bid.id)).where(Bid.opportunity_id.in_(opportunity_ids)),
            "token_history": select(func.count(TokenHistory.id)).where(
                TokenHistory.class_id == class_id
            ),
            "audit_logs": select(func.count(AuditLog.id)).where(AuditLog.class_id == class_id),
            "opportunities": select(func.count(Opportunity.id)).where(
                Opportunity.class_id == class_id
            ),
            "students": select(func.count(Student.id)).where(Student.class_id == class_id),
        }
        counts = {}
        for key in CASCADE_ORDER:
            counts[key] = (await self.db_session.execute(queries[key])).scalar() or 0
        return counts

    async def validate_class_for_deletion(self, class_id: str) -> DeletionPreview:
        """Check the class exists and count what a deletion would remove."""
        class_obj = await Class.get_by_id(self.db_session, class_id)
        if not class_obj:
            return DeletionPreview(
                valid=False, class_id=class_id,
                error=ErrorCode.NOT_FOUND, message="Class not found",
            )
        return DeletionPreview(
            valid=True,
            class_id=class_id,
            class_name=class_obj.name,
            record_counts=await self._count_related(class_id),
        )

    def _cascade_statements(self, class_id: str) -> List[Tuple[str, Any]]:
        opportunity_ids = select(Opportunity.id).where(Opportunity.class_id == class_id)
        student_ids = select(Student.id).where(Student.class_id == class_id)
        return [
            ("selections", delete(Selection).where(Selection.opportunity_id.in_(opportunity_ids))),
            (
                "bids",
                delete(Bid).where(
                    Bid.opportunity_id.in_(opportunity_ids) | Bid.student_id.in_(student_ids)
                ),
            ),
            ("token_history", delete(TokenHistory).where(TokenHistory.class_id == class_id)),
            ("audit_logs", delete(AuditLog).where(AuditLog.class_id == class_id)),
            ("opportunities", delete(Opportunity).where(Opportunity.class_id == class_id)),
            ("students", delete(Student).where(Student.class_id == class_id)),
        ]

    async def _delete_step(self, key: str, statement) -> int:
        result = await self.db_session.execute(
            statement.execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def delete_class_atomic(self, class_id: str) -> DeletionResult:
        """
        Delete a class and every row that belongs to it in one transaction.

        Either everything goes or nothing does. On failure the transaction is
        rolled back, a FAILED audit row is attempted separately, and the
        original error is returned even if that audit write fails too.
        """
        timestamp = datetime.now(timezone.utc)
        logger.info(f"Starting atomic deletion for class: {class_id}")

        preview = await self.validate_class_for_deletion(class_id)
        if not preview.valid:
            logger.warning(f"Class not found for deletion: {class_id}")
            return DeletionResult(
                success=False, class_id=class_id, timestamp=timestamp,
                error=ErrorCode.NOT_FOUND, message=preview.message,
            )

        class_name = preview.class_name
        try:
            deleted_counts = {}
            for key, statement in self._cascade_statements(class_id):
                deleted_counts[key] = await self._delete_step(key, statement)
            await self.db_session.execute(
                delete(Class)
                .where(Class.id == class_id)
                .execution_options(synchronize_session=False)
            )

            audit = AuditLog(
                class_id=None,
                table_name="classes",
                action=AuditAction.DELETE,
                status=AuditStatus.SUCCESS,
                details={
                    "class_id": class_id,
                    "class_name": class_name,
                    "deleted_counts": deleted_counts,
                },
                performed_at=timestamp,
            )
            self.db_session.add(audit)
            await self.db_session.commit()
        except Exception as e:
            await self.db_session.rollback()
            logger.error(f"Atomic deletion of class {class_id} failed: {e}", exc_info=True)
            audit_id = await self._record_failed_deletion(class_id, class_name, str(e), timestamp)
            return DeletionResult(
                success=False,
                class_id=class_id,
                class_name=class_name,
                timestamp=timestamp,
                audit_log_id=audit_id,
                error=ErrorCode.PERSISTENCE_ERROR,
                message=f"Class deletion failed: {e}",
            )

        self.db_session.expunge_all()
        total = sum(deleted_counts.values())
        logger.info(f"Deleted class {class_name} ({class_id}) and {total} related records")
        return DeletionResult(
            success=True,
            class_id=class_id,
            class_name=class_name,
            timestamp=timestamp,
            deleted_counts=deleted_counts,
            audit_log_id=audit.id,
        )

    async def _write_audit(self, entry: AuditLog) -> str:
        self.db_session.add(entry)
        await self.db_session.commit()
        return entry.id

    async def _record_failed_deletion(
        self, class_id: str, class_name: Optional[str], error: str, timestamp: datetime
    ) -> Optional[str]:
        """Best-effort FAILED audit row; never raises."""
        entry = AuditLog(
            class_id=class_id,
            table_name="classes",
            action=AuditAction.DELETE,
            status=AuditStatus.FAILED,
            details={
                "class_id": class_id,
                "class_name": class_name,
                "error": error,
                "timestamp": timestamp.isoformat(),
            },
            performed_at=timestamp,
        )
        try:
            return await self._write_audit(entry)
        except Exception as audit_error:
            await self.db_session.rollback()
            logger.error(f"Failed to log deletion error for class {class_id}: {audit_error}")
            return None

    # ============== Students ==============

    async def add_students(
        self, class_id: str, rows: Sequence[StudentImportRow]
    ) -> StudentImportResult:
        """
        Add validated roster rows to a class.

        Rows whose (email, student number) already exist in the class, or repeat
        an earlier row in the batch, are skipped and reported.
        """
        class_obj = await Class.get_by_id(self.db_session, class_id)
        if not class_obj:
            return StudentImportResult(
                success=False, error=ErrorCode.NOT_FOUND, message="Class not found"
            )

        created: List[Student] = []
        skipped: List[SkippedRow] = []
        seen = set()
        for index, row in enumerate(rows, start=1):
            email = str(row.email).strip().lower()
            key = (email, row.student_number)
            if key in seen:
                skipped.append(SkippedRow(index, email, row.student_number, "Duplicate row in import"))
                continue
            seen.add(key)
            if await Student.find_in_class(self.db_session, class_id, email, row.student_number):
                skipped.append(SkippedRow(index, email, row.student_number, "Student already in class"))
                continue
            student = Student(
                class_id=class_id,
                name=row.name,
                email=email,
                student_number=row.student_number,
                tokens_remaining=config.TOKENS_PER_STUDENT,
            )
            self.db_session.add(student)
            created.append(student)

        try:
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Student import into class {class_id} failed: {e}", exc_info=True)
            return StudentImportResult(
                success=False, error=ErrorCode.PERSISTENCE_ERROR, message="Could not import students"
            )

        logger.info(
            f"Imported {len(created)} students into class {class_id}, skipped {len(skipped)}"
        )
        return StudentImportResult(success=True, created=created, skipped=skipped)

    # ============== Opportunities ==============

    async def create_opportunity(
        self, class_id: str, data: OpportunityCreate
    ) -> OpportunityResult:
        """Create an opportunity; dates are validated here rather than at bid time."""
        class_obj = await Class.get_by_id(self.db_session, class_id)
        if not class_obj:
            return OpportunityResult(
                success=False, error=ErrorCode.NOT_FOUND, message="Class not found"
            )

        try:
            event_date = time_window.parse_date(data.event_date, "event_date")
            bid_open_date = (
                time_window.parse_date(data.bid_open_date, "bid_open_date")
                if data.bid_open_date is not None
                else None
            )
        except InvalidDateError as e:
            return OpportunityResult(success=False, error=ErrorCode.INVALID_DATE, message=str(e))

        if data.capacity is not None and data.capacity < 0:
            return OpportunityResult(
                success=False, error=ErrorCode.INVALID_CAPACITY,
                message="Capacity must be zero or more",
            )

        if time_window.is_misconfigured(event_date, bid_open_date):
            logger.warning(
                f"Opportunity '{data.title}' opens for bidding at or after its event date; "
                f"it will never accept bids"
            )

        opportunity = Opportunity(
            class_id=class_id,
            title=data.title,
            description=data.description,
            event_date=event_date,
            bid_open_date=bid_open_date,
            capacity=data.capacity,
        )
        try:
            self.db_session.add(opportunity)
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Failed to create opportunity in class {class_id}: {e}", exc_info=True)
            return OpportunityResult(
                success=False, error=ErrorCode.PERSISTENCE_ERROR,
                message="Could not create opportunity",
            )

        await self.db_session.refresh(opportunity)
        logger.info(f"Opportunity created: {opportunity.id} in class {class_id}")
        return OpportunityResult(success=True, opportunity=opportunity)

    async def update_opportunity(
        self, opportunity_id: str, data: OpportunityUpdate
    ) -> OpportunityResult:
        opportunity = await Opportunity.get_by_id(self.db_session, opportunity_id)
        if not opportunity:
            return OpportunityResult(
                success=False, error=ErrorCode.NOT_FOUND, message="Opportunity not found"
            )

        update_data = data.model_dump(exclude_unset=True)
        try:
            for date_field in ("event_date", "bid_open_date"):
                if update_data.get(date_field) is not None:
                    update_data[date_field] = time_window.parse_date(update_data[date_field], date_field)
        except InvalidDateError as e:
            return OpportunityResult(success=False, error=ErrorCode.INVALID_DATE, message=str(e))

        if "event_date" in update_data and update_data["event_date"] is None:
            return OpportunityResult(
                success=False, error=ErrorCode.INVALID_DATE, message="event_date is required"
            )

        for field_name, value in update_data.items():
            setattr(opportunity, field_name, value)

        if time_window.is_misconfigured(opportunity.event_date, opportunity.bid_open_date):
            logger.warning(f"Opportunity {opportunity_id} now opens at or after its event date")

        try:
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Failed to update opportunity {opportunity_id}: {e}", exc_info=True)
            return OpportunityResult(
                success=False, error=ErrorCode.PERSISTENCE_ERROR,
                message="Could not update opportunity",
            )
        await self.db_session.refresh(opportunity)
        return OpportunityResult(success=True, opportunity=opportunity)

    async def delete_opportunity(self, opportunity_id: str) -> OpportunityResult:
        """Delete an opportunity together with its bids and selections."""
        opportunity = await Opportunity.get_by_id(self.db_session, opportunity_id)
        if not opportunity:
            return OpportunityResult(
                success=False, error=ErrorCode.NOT_FOUND, message="Opportunity not found"
            )

        try:
            selections = await self._delete_step(
                "selections", delete(Selection).where(Selection.opportunity_id == opportunity_id)
            )
            bids = await self._delete_step(
                "bids", delete(Bid).where(Bid.opportunity_id == opportunity_id)
            )
            await self.db_session.delete(opportunity)
            await self.db_session.commit()
        except SQLAlchemyError as e:
            await self.db_session.rollback()
            logger.error(f"Failed to delete opportunity {opportunity_id}: {e}", exc_info=True)
            return OpportunityResult(
                success=False, error=ErrorCode.PERSISTENCE_ERROR,
                message="Could not delete opportunity",
            )

        logger.info(f"Deleted opportunity {opportunity_id} ({bids} bids, {selections} selections)")
        return OpportunityResult(
            success=True, deleted_counts={"bids": bids, "selections": selections}
        )
