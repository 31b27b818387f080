"""Standardized error handling for the Folio API.

Domain failures raised by the services are ``APIError`` subclasses so the UI can
branch on a stable ``code`` (for example, send a collaborator into the proposal
flow on ``PROPOSAL_REQUIRED`` instead of retrying).
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware


class ErrorCode(StrEnum):
    """Standard error codes for API responses."""

    # Resource errors
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    PROPOSAL_NOT_FOUND = "PROPOSAL_NOT_FOUND"
    EDIT_SESSION_NOT_FOUND = "EDIT_SESSION_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMPTY_CHANGE_SET = "EMPTY_CHANGE_SET"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    INVALID_FIELD_VALUE = "INVALID_FIELD_VALUE"
    OWNER_CANNOT_PROPOSE = "OWNER_CANNOT_PROPOSE"
    DUPLICATE_MEMBER = "DUPLICATE_MEMBER"

    # Workflow errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Upload errors
    UPLOAD_FAILED = "UPLOAD_FAILED"
    DUPLICATE_FILE_NAME = "DUPLICATE_FILE_NAME"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    INVALID_FILE_NAME = "INVALID_FILE_NAME"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    STORAGE_ERROR = "STORAGE_ERROR"

    # Auth errors
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    PROPOSAL_REQUIRED = "PROPOSAL_REQUIRED"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"


class APIError(Exception):
    """Base exception for API errors with structured responses."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code, message, status_code=404, details=details)


class ValidationError(APIError):
    """Missing or malformed input."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code, message, status_code=400, details=details)


class UnauthorizedError(APIError):
    """No acting user could be identified."""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code, message, status_code=401, details=details)


class AuthorizationError(APIError):
    """The requester's role does not permit the operation."""

    def __init__(
        self,
        message: str = "Access denied",
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code, message, status_code=403, details=details)


class ProposalRequiredError(AuthorizationError):
    """A collaborator attempted a direct write; the change must go through a proposal."""

    def __init__(
        self,
        message: str = "Collaborators cannot modify the project directly. Submit a proposal.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=ErrorCode.PROPOSAL_REQUIRED, details=details)


class InvalidTransitionError(APIError):
    """The requested status change is not an edge of the review state machine."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            ErrorCode.INVALID_TRANSITION, message, status_code=400, details=details
        )


class ConflictError(APIError):
    """The canonical record moved since the change was computed."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.VERSION_CONFLICT, message, status_code=409, details=details)


class StorageError(APIError):
    """The file store or the database could not persist a change. Safe to retry."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(ErrorCode.STORAGE_ERROR, message, status_code=503, details=details)


class UploadError(APIError):
    """A single file in a batch could not be stored.

    Collected per file and reported alongside a stored batch. Raised directly
    when a file is only being queued in an editing session.
    """

    def __init__(
        self,
        file_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UPLOAD_FAILED,
    ):
        super().__init__(code, message, status_code=400, details={"file_name": file_name})
        self.file_name = file_name

    def to_dict(self) -> dict[str, Any]:
        return {"file_name": self.file_name, "code": str(self.code), "message": self.message}


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware that adds a unique request ID to each request."""

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Get the request ID from the request state."""
    return getattr(request.state, "request_id", str(uuid4()))


def build_error_response(
    code: str,
    message: str,
    request_id: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a standardized error response."""
    error_data: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if details:
        error_data["details"] = details
    return {"error": error_data}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    request_id = get_request_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            code=exc.code,
            message=exc.message,
            request_id=request_id,
            status_code=exc.status_code,
            details=exc.details,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with standardized format."""
    request_id = get_request_id(request)

    code_map = {
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        422: ErrorCode.VALIDATION_ERROR,
    }
    code = code_map.get(exc.status_code, ErrorCode.BAD_REQUEST)

    return JSONResponse(
        status_code=exc.status_code,
        content=build_error_response(
            code=code,
            message=str(exc.detail),
            request_id=request_id,
            status_code=exc.status_code,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request body/query validation failures with standardized format."""
    request_id = get_request_id(request)

    # Transform Pydantic errors into a more readable format
    field_errors = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_errors.append(
            {
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            }
        )

    return JSONResponse(
        status_code=422,
        content=build_error_response(
            code=ErrorCode.VALIDATION_ERROR,
            message="Request validation failed",
            request_id=request_id,
            status_code=422,
            details={"errors": field_errors},
        ),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = get_request_id(request)
    return JSONResponse(
        status_code=500,
        content=build_error_response(
            code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            request_id=request_id,
            status_code=500,
        ),
    )
