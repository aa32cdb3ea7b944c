"""
Event management API endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status

from ..schemas.event import (
    EventCollectionResponse,
    EventCreate,
    EventFilters,
    EventListResponse,
    EventResponse,
    EventStatusUpdate,
    EventUpdate,
    SeatAvailabilityResponse,
)
from ..schemas.common import error_responses
from ..services.event_service import EventService
from ..utils.auth import UserRole
from ..utils.dependencies import get_event_service, require_roles
from ..utils.exceptions import ValidationError

router = APIRouter(prefix="/events", tags=["events"], responses=error_responses(400, 503))

require_organizer = require_roles(UserRole.ORGANIZER, UserRole.ADMIN)
require_admin = require_roles(UserRole.ADMIN)


def event_filters(
    search: Optional[str] = Query(None, description="Search in title, description or location"),
    category_id: Optional[str] = Query(None, description="Filter by category"),
    location: Optional[str] = Query(None, description="Filter by location"),
    date_from: Optional[datetime] = Query(None, description="Events starting at or after (ISO 8601)"),
    date_to: Optional[datetime] = Query(None, description="Events starting at or before (ISO 8601)"),
    min_price: Optional[Decimal] = Query(None, ge=0, description="Minimum seat price"),
    max_price: Optional[Decimal] = Query(None, ge=0, description="Maximum seat price"),
    sort_by: Literal["starts_at", "price_per_seat", "title", "created_at"] = Query("starts_at"),
    sort_order: Literal["asc", "desc"] = Query("asc"),
) -> EventFilters:
    try:
        return EventFilters(
            search=search,
            category_id=category_id,
            location=location,
            date_from=date_from,
            date_to=date_to,
            min_price=min_price,
            max_price=max_price,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except pydantic.ValidationError as e:
        field_errors = {}
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"]) or "query"
            field_errors.setdefault(field, []).append(error["msg"])
        raise ValidationError("Invalid event filters", field_errors=field_errors)


@router.get("", response_model=EventListResponse)
async def list_events(
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    filters: EventFilters = Depends(event_filters),
    event_service: EventService = Depends(get_event_service)
):
    """
    List published events with filtering, sorting and pagination.

    Results are cached for a short time and invalidated on any event write.
    """
    return await event_service.list_events(filters, page, size)


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED, responses=error_responses(401, 403))
async def create_event(
    event_data: EventCreate,
    _=Depends(require_organizer),
    event_service: EventService = Depends(get_event_service)
):
    """Create a new event. Organizers and admins only."""
    return await event_service.create_event(event_data)


@router.get("/upcoming", response_model=EventCollectionResponse)
async def list_upcoming_events(
    limit: int = Query(20, ge=1, le=100),
    event_service: EventService = Depends(get_event_service)
):
    """Published events that have not started, soonest first."""
    return await event_service.list_upcoming(limit)


@router.get("/trending", response_model=EventCollectionResponse)
async def list_trending_events(
    limit: int = Query(10, ge=1, le=100),
    event_service: EventService = Depends(get_event_service)
):
    """Upcoming events ranked by seats sold."""
    return await event_service.list_trending(limit)


@router.get("/weekend", response_model=EventCollectionResponse)
async def list_weekend_events(
    limit: int = Query(20, ge=1, le=100),
    event_service: EventService = Depends(get_event_service)
):
    """Events between now and the end of the coming Sunday (UTC)."""
    return await event_service.list_weekend(limit)


@router.get("/this-month", response_model=EventCollectionResponse)
async def list_this_month_events(
    limit: int = Query(20, ge=1, le=100),
    event_service: EventService = Depends(get_event_service)
):
    return await event_service.list_this_month(limit)


@router.get("/category/{category_id}", response_model=EventCollectionResponse, responses=error_responses(404))
async def list_events_in_category(
    category_id: str,
    limit: int = Query(50, ge=1, le=100),
    event_service: EventService = Depends(get_event_service)
):
    """Published events tagged with a category."""
    return await event_service.list_by_category(category_id, limit)


@router.get("/{event_id}", response_model=EventResponse, responses=error_responses(404))
async def get_event(
    event_id: UUID,
    event_service: EventService = Depends(get_event_service)
):
    return await event_service.get_event_response(event_id)


@router.put("/{event_id}", response_model=EventResponse, responses=error_responses(401, 403, 404))
async def update_event(
    event_id: UUID,
    event_data: EventUpdate,
    _=Depends(require_organizer),
    event_service: EventService = Depends(get_event_service)
):
    """
    Update an existing event.

    The seat count can only shrink while every reserved or sold seat still fits.
    """
    return await event_service.update_event(event_id, event_data)


@router.patch("/{event_id}/status", response_model=EventResponse)
async def set_event_status(
    event_id: UUID,
    body: EventStatusUpdate,
    _=Depends(require_organizer),
    event_service: EventService = Depends(get_event_service)
):
    """Publish or unpublish an event. Only PUBLISHED events accept holds."""
    return await event_service.set_status(event_id, body.status)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT, responses=error_responses(401, 403, 404, 409))
async def delete_event(
    event_id: UUID,
    _=Depends(require_admin),
    event_service: EventService = Depends(get_event_service)
):
    """
    Delete an event.

    Events with PENDING or CONFIRMED bookings cannot be deleted. Finished
    bookings survive without an event reference.
    """
    await event_service.delete_event(event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{event_id}/image", response_model=EventResponse)
async def upload_event_image(
    event_id: UUID,
    file: UploadFile = File(..., description="JPEG, PNG, GIF or WebP image"),
    _=Depends(require_organizer),
    event_service: EventService = Depends(get_event_service)
):
    """Upload or replace the event image. The previous image is deleted."""
    data = await file.read()
    return await event_service.upload_image(event_id, data, file.filename or "", file.content_type or "")


@router.get("/{event_id}/seats", response_model=SeatAvailabilityResponse)
async def get_seat_availability(
    event_id: UUID,
    event_service: EventService = Depends(get_event_service)
):
    """Seats currently sold or held by a live hold."""
    return await event_service.get_seat_availability(event_id)
