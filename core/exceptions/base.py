import enum
from typing import Any, Dict, Optional


class ErrorCode(str, enum.Enum):
    """Failure tags returned by lottery services as plain values."""

    WINDOW_CLOSED = "WINDOW_CLOSED"
    TOKEN_UNAVAILABLE = "TOKEN_UNAVAILABLE"
    DUPLICATE_BID = "DUPLICATE_BID"
    INVALID_CAPACITY = "INVALID_CAPACITY"
    DUPLICATE_BIDDER = "DUPLICATE_BIDDER"
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INVALID_DATE = "INVALID_DATE"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    DRAW_MISMATCH = "DRAW_MISMATCH"


class CustomException(Exception):
    """Base exception class for all custom exceptions."""

    code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    message: str = "An unexpected error occurred"
    data: Optional[Dict[str, Any]] = None

    def __init__(
        self,
        message: str = None,
        code: int = None,
        error_code: str = None,
        data: Dict[str, Any] = None
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.error_code = error_code or self.error_code
        self.data = data or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, error_code={self.error_code}, message={self.message})"


class BadRequestException(CustomException):
    """Exception for bad request errors (400)."""

    code = 400
    error_code = "BAD_REQUEST"
    message = "Bad request"


class UnauthorizedException(CustomException):
    """Exception for unauthorized access (401)."""

    code = 401
    error_code = "UNAUTHORIZED"
    message = "Unauthorized"


class ForbiddenException(CustomException):
    """Exception for forbidden access (403)."""

    code = 403
    error_code = "FORBIDDEN"
    message = "Access forbidden"


class NotFoundException(CustomException):
    """Exception for resource not found (404)."""

    code = 404
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ConflictException(CustomException):
    """Exception for resource conflicts (409)."""

    code = 409
    error_code = "CONFLICT"
    message = "Resource conflict"


class ValidationException(CustomException):
    """Exception for validation errors (422)."""

    code = 422
    error_code = "VALIDATION_ERROR"
    message = "Validation error"


class ServiceUnavailableException(CustomException):
    """Exception for transient backend failures (503)."""

    code = 503
    error_code = "SERVICE_UNAVAILABLE"
    message = "Please try again"


# HTTP translation for service-level failures
ERROR_CODE_EXCEPTIONS: Dict[ErrorCode, type] = {
    ErrorCode.WINDOW_CLOSED: ConflictException,
    ErrorCode.TOKEN_UNAVAILABLE: ConflictException,
    ErrorCode.DUPLICATE_BID: ConflictException,
    ErrorCode.DUPLICATE_NAME: ConflictException,
    ErrorCode.DRAW_MISMATCH: ConflictException,
    ErrorCode.INVALID_CAPACITY: ValidationException,
    ErrorCode.DUPLICATE_BIDDER: ValidationException,
    ErrorCode.INVALID_DATE: ValidationException,
    ErrorCode.NOT_FOUND: NotFoundException,
    ErrorCode.PERSISTENCE_ERROR: ServiceUnavailableException,
}


def exception_for(error: ErrorCode, message: str = None, data: Dict[str, Any] = None) -> CustomException:
    """Build the HTTP exception that represents a service failure."""
    exc_class = ERROR_CODE_EXCEPTIONS.get(error, CustomException)
    return exc_class(message=message, error_code=error.value, data=data)
