"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: Optional[str] = None
    timestamp: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": {
                        "error_code": "SEAT_CONFLICT",
                        "message": "Seats already taken: 3, 4",
                        "details": {
                            "seats": ["3", "4"],
                            "event_id": "123e4567-e89b-12d3-a456-426614174000"
                        },
                        "suggestions": [
                            "Check current availability at GET /api/v1/events/{id}/seats",
                            "Choose different seats"
                        ]
                    },
                    "error_id": "0b6f1c7e-2f3a-4e0e-9d43-2a4e5a2f7c11",
                    "timestamp": "2024-01-01T12:00:00+00:00"
                }
            ]
        }
    )


ERROR_DESCRIPTIONS = {
    400: "Invalid input",
    401: "Missing, malformed or expired bearer token",
    403: "Authenticated but not allowed",
    404: "Resource not found",
    409: "Conflicts with the current seat or booking state",
    410: "The hold expired before it was confirmed",
    503: "A backing service is unavailable; retry after the Retry-After delay",
}


def error_responses(*status_codes: int) -> Dict[int, Dict[str, Any]]:
    """OpenAPI ``responses`` entries documenting the standard error body."""
    return {
        code: {"model": ErrorResponse, "description": ERROR_DESCRIPTIONS[code]}
        for code in status_codes
    }


class HealthStatus(BaseModel):
    """Schema for health check responses."""

    status: str = Field(..., description="Overall health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Health check timestamp")
    dependencies: Optional[Dict[str, Dict[str, Any]]] = Field(
        None,
        description="Status of service dependencies"
    )
