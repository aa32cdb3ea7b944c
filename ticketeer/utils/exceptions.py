"""
Domain exceptions for the Ticketeer booking backend.
"""

from typing import Any, Dict, Optional, List, Iterable
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes returned in API error bodies."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Booking lifecycle errors
    SEAT_CONFLICT = "SEAT_CONFLICT"
    INVALID_BOOKING_STATE = "INVALID_BOOKING_STATE"
    BOOKING_EXPIRED = "BOOKING_EXPIRED"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    EVENT_HAS_BOOKINGS = "EVENT_HAS_BOOKINGS"

    # Category errors
    CATEGORY_EXISTS = "CATEGORY_EXISTS"
    CATEGORY_IN_USE = "CATEGORY_IN_USE"

    # External dependency errors
    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"


class TicketeerError(Exception):
    """Base exception class for Ticketeer."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }

        if self.details:
            result["details"] = self.details

        if self.suggestions:
            result["suggestions"] = self.suggestions

        if self.retry_after:
            result["retry_after"] = self.retry_after

        return result


class ValidationError(TicketeerError):
    """Raised when input fails domain validation."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.VALIDATION_ERROR,
            details={"field_errors": field_errors} if field_errors else None,
            **kwargs
        )
        self.field_errors = field_errors or {}


class NotFoundError(TicketeerError):
    """Base exception for resource not found errors."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id} if resource_type else None,
            **kwargs
        )


class EventNotFoundError(NotFoundError):

    def __init__(self, event_id: Any, **kwargs):
        super().__init__(
            f"Event {event_id} not found",
            resource_type="event",
            resource_id=str(event_id),
            suggestions=["Check the event ID", "Browse available events"],
            **kwargs
        )


class BookingNotFoundError(NotFoundError):

    def __init__(self, booking_id: Any, **kwargs):
        super().__init__(
            f"Booking {booking_id} not found",
            resource_type="booking",
            resource_id=str(booking_id),
            suggestions=["Check the booking ID", "View your bookings"],
            **kwargs
        )


class CategoryNotFoundError(NotFoundError):

    def __init__(self, slug: str, **kwargs):
        super().__init__(
            f"Category {slug} not found",
            resource_type="category",
            resource_id=slug,
            suggestions=["List categories at GET /api/v1/categories"],
            **kwargs
        )


class AuthenticationError(TicketeerError):
    """Raised when a request carries no usable credentials."""

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.UNAUTHORIZED,
            suggestions=["Provide a valid bearer token"],
            **kwargs
        )


class InvalidTokenError(AuthenticationError):
    """Raised by the auth provider for malformed, forged or expired tokens."""

    def __init__(self, message: str = "Invalid or expired token", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(TicketeerError):
    """Raised when the caller is authenticated but not allowed to act."""

    def __init__(self, message: str = "Access denied", required_permission: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            error_code=ErrorCode.FORBIDDEN,
            details={"required_permission": required_permission} if required_permission else None,
            **kwargs
        )


class BusinessLogicError(TicketeerError):
    """Base exception for booking lifecycle violations."""
    pass


class SeatConflictError(BusinessLogicError):
    """Raised when requested seats are already held or sold."""

    def __init__(self, seats: Iterable[str], event_id: Optional[Any] = None, **kwargs):
        self.seats = list(seats)
        super().__init__(
            f"Seats already taken: {', '.join(self.seats)}",
            error_code=ErrorCode.SEAT_CONFLICT,
            details={"seats": self.seats, "event_id": str(event_id) if event_id else None},
            suggestions=["Choose different seats", "Refresh seat availability"],
            **kwargs
        )


class InvalidStateError(BusinessLogicError):
    """Raised when a booking is not in a state that allows the operation."""

    def __init__(self, booking_id: Any, current_state: str, required_state: str, **kwargs):
        super().__init__(
            f"Booking {booking_id} is {current_state}, required {required_state}",
            error_code=ErrorCode.INVALID_BOOKING_STATE,
            details={
                "booking_id": str(booking_id),
                "current_state": current_state,
                "required_state": required_state,
            },
            **kwargs
        )


class BookingExpiredError(BusinessLogicError):
    """Raised when confirming a hold whose deadline has passed."""

    def __init__(self, booking_id: Any, **kwargs):
        super().__init__(
            f"Booking {booking_id} has expired",
            error_code=ErrorCode.BOOKING_EXPIRED,
            details={"booking_id": str(booking_id)},
            suggestions=["Create a new booking", "Complete payment before the hold expires"],
            **kwargs
        )


class NotEligibleError(BusinessLogicError):
    """Raised when a booking does not qualify for a refund."""

    def __init__(self, booking_id: Any, reason: str, **kwargs):
        super().__init__(
            f"Booking {booking_id} is not eligible for refund: {reason}",
            error_code=ErrorCode.NOT_ELIGIBLE,
            details={"booking_id": str(booking_id), "reason": reason},
            **kwargs
        )


class EventHasBookingsError(BusinessLogicError):
    """Raised when trying to delete an event with active bookings."""

    def __init__(self, event_id: Any, booking_count: int, **kwargs):
        super().__init__(
            f"Cannot delete event {event_id} with {booking_count} active bookings",
            error_code=ErrorCode.EVENT_HAS_BOOKINGS,
            details={"event_id": str(event_id), "booking_count": booking_count},
            suggestions=["Cancel all bookings first"],
            **kwargs
        )


class DependencyError(TicketeerError):
    """Raised when a backing service (database, cache, storage, broker) is unavailable."""

    def __init__(self, service_name: str, message: str, retry_after: int = 30, **kwargs):
        super().__init__(
            f"{service_name} unavailable: {message}",
            error_code=ErrorCode.DEPENDENCY_UNAVAILABLE,
            details={"service_name": service_name},
            suggestions=["Try again later"],
            retry_after=retry_after,
            **kwargs
        )
        self.service_name = service_name


class CategoryExistsError(BusinessLogicError):

    def __init__(self, slug: str, **kwargs):
        super().__init__(
            f"Category {slug} already exists",
            error_code=ErrorCode.CATEGORY_EXISTS,
            details={"slug": slug},
            **kwargs
        )


class CategoryInUseError(BusinessLogicError):
    """Raised when deleting a category that events are still tagged with."""

    def __init__(self, slug: str, event_count: int, **kwargs):
        super().__init__(
            f"Category {slug} is used by {event_count} events",
            error_code=ErrorCode.CATEGORY_IN_USE,
            details={"slug": slug, "event_count": event_count},
            suggestions=["Remove the category from its events first"],
            **kwargs
        )
