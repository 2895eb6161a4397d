from app.models.audit_log import AuditAction, AuditLog, AuditStatus
from app.models.bid import Bid
from app.models.class_ import Class
from app.models.opportunity import Opportunity
from app.models.selection import Selection
from app.models.student import Student
from app.models.token_history import TokenHistory, TokenReason

__all__ = [
    # Class
    "Class",
    # Student
    "Student",
    # Opportunity
    "Opportunity",
    # Bidding
    "Bid",
    "Selection",
    # Ledger / audit
    "TokenHistory",
    "TokenReason",
    "AuditLog",
    "AuditAction",
    "AuditStatus",
]
