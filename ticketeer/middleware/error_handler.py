"""
Error handling middleware that turns exceptions into structured JSON responses.
"""

import logging
import traceback
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.exceptions import (
    BusinessLogicError,
    DependencyError,
    ErrorCode,
    NotFoundError,
    TicketeerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR_CODE = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.SEAT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_BOOKING_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.NOT_ELIGIBLE: status.HTTP_409_CONFLICT,
    ErrorCode.EVENT_HAS_BOOKINGS: status.HTTP_409_CONFLICT,
    ErrorCode.CATEGORY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.CATEGORY_IN_USE: status.HTTP_409_CONFLICT,
    ErrorCode.BOOKING_EXPIRED: status.HTTP_410_GONE,
    ErrorCode.DEPENDENCY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(exc: TicketeerError, error_id: str) -> JSONResponse:
    """Render a domain error as the standard error body."""
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.error_code == ErrorCode.UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=STATUS_BY_ERROR_CODE.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        content={
            "error": exc.to_dict(),
            "error_id": error_id,
            "timestamp": _timestamp(),
        },
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request schema failures as a 400 with per-field messages."""
    field_errors = {}
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        field_errors.setdefault(field_path or "body", []).append(error["msg"])

    error_id = str(uuid4())
    logger.warning(
        f"Request validation failed [{error_id}]: {request.method} {request.url.path}",
        extra={"error_id": error_id, "field_errors": field_errors}
    )
    return error_response(ValidationError("Request validation failed", field_errors=field_errors), error_id)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catches exceptions escaping the routes and formats them."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            return self._handle_exception(request, exc, str(uuid4()))

    def _handle_exception(self, request: Request, exc: Exception, error_id: str) -> JSONResponse:
        if isinstance(exc, TicketeerError):
            self._log_domain_error(request, exc, error_id)
            return error_response(exc, error_id)

        if isinstance(exc, IntegrityError):
            logger.warning(f"Integrity error [{error_id}]: {exc.orig}", extra={"error_id": error_id})
            conflict = TicketeerError(
                "Data integrity constraint violation",
                error_code=ErrorCode.VALIDATION_ERROR,
                details={"constraint_type": "integrity"}
            )
            response = error_response(conflict, error_id)
            response.status_code = status.HTTP_409_CONFLICT
            return response

        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            logger.error(
                f"Database unavailable [{error_id}]: {type(exc).__name__}",
                extra={"error_id": error_id}
            )
            return error_response(DependencyError("database", "temporarily unavailable"), error_id)

        logger.error(
            f"Unexpected error [{error_id}]: {exc}",
            extra={
                "error_id": error_id,
                "error_type": type(exc).__name__,
                "method": request.method,
                "path": request.url.path,
            },
            exc_info=exc
        )
        content = {
            "error": TicketeerError(
                "An unexpected error occurred",
                details={"error_type": type(exc).__name__} if self.debug else None
            ).to_dict(),
            "error_id": error_id,
            "timestamp": _timestamp(),
        }
        if self.debug:
            content["debug"] = {
                "exception": str(exc),
                "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)

    def _log_domain_error(self, request: Request, exc: TicketeerError, error_id: str) -> None:
        extra = {
            "error_id": error_id,
            "error_code": exc.error_code.value,
            "method": request.method,
            "path": request.url.path,
            "details": exc.details,
        }
        if isinstance(exc, DependencyError):
            logger.error(f"Dependency error [{error_id}]: {exc.message}", extra=extra)
        elif isinstance(exc, (ValidationError, NotFoundError, BusinessLogicError)):
            logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
        else:
            logger.info(f"Request rejected [{error_id}]: {exc.message}", extra=extra)
