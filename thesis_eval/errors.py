"""
thesis_eval/errors.py
Centralized API error handling

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request / failed answer validation
- 403: Caller may not perform this transition
- 404: Resource does not exist
- 409: Lifecycle state conflict, duplicate assignment, concurrent modification
- 422: Request body validation (Pydantic)
- 500: NEVER caused by user input (internal only)
"""
import logging
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from thesis_eval.services.assignment_service import (
    AssignmentError, DuplicateAssignmentError, EvaluatorNotFoundError, ScheduleNotFoundError
)
from thesis_eval.services.feedback_form_service import (
    FeedbackFormError, FeedbackFormNotFoundError, DuplicateFeedbackFormError
)
from thesis_eval.state_machines.evaluation_lifecycle import (
    ConcurrentModificationError, EvaluationNotFoundError, EvaluationStateError,
    EvaluationValidationError, TransitionForbiddenError
)

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID = "INVALID"

    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"
    SCHEDULE_NOT_FOUND = "SCHEDULE_NOT_FOUND"
    EVALUATOR_NOT_FOUND = "EVALUATOR_NOT_FOUND"

    LOCKED = "LOCKED"
    SUBMITTED = "SUBMITTED"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    DUPLICATE_ASSIGNMENT = "DUPLICATE_ASSIGNMENT"
    DUPLICATE_FORM = "DUPLICATE_FORM"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, message: str, code: str = ErrorCode.NOT_FOUND):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - State conflict or duplicate"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


# Domain exceptions the HTTP layer translates
DOMAIN_ERRORS = (
    AssignmentError,
    EvaluationStateError,
    EvaluationValidationError,
    EvaluationNotFoundError,
    TransitionForbiddenError,
    ConcurrentModificationError,
    FeedbackFormError,
)


def to_api_error(exc: Exception) -> APIError:
    """Map a domain exception onto the API error envelope."""
    code = getattr(exc, "code", ErrorCode.INTERNAL_ERROR)
    message = getattr(exc, "message", str(exc))

    if isinstance(exc, EvaluationValidationError):
        return BadRequestError(message, code, details={"missing": exc.missing})
    if isinstance(exc, (EvaluationNotFoundError, ScheduleNotFoundError,
                        EvaluatorNotFoundError, FeedbackFormNotFoundError)):
        return NotFoundError(message, code)
    if isinstance(exc, TransitionForbiddenError):
        return ForbiddenError(message, code)
    if isinstance(exc, (EvaluationStateError, DuplicateAssignmentError,
                        DuplicateFeedbackFormError, ConcurrentModificationError)):
        return ConflictError(message, code)
    if isinstance(exc, (AssignmentError, FeedbackFormError)):
        return BadRequestError(message, code)

    logger.error(f"Unmapped domain error {type(exc).__name__}: {exc}")
    return APIError(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error="Internal Error",
        message="An internal error occurred. Please try again later.",
        code=ErrorCode.INTERNAL_ERROR
    )
