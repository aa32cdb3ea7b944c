"""
Event schemas for request/response validation.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..models.event import EventStatus


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EventBase(BaseModel):
    """Base event schema with common fields."""

    title: str = Field(..., min_length=1, max_length=255, description="Event title")
    description: Optional[str] = Field(None, description="Event description")
    location: str = Field(..., min_length=1, max_length=255, description="Venue or city")
    starts_at: datetime = Field(..., description="Event start, naive values are read as UTC")
    total_seats: int = Field(..., gt=0, le=100_000, description="Number of seats, numbered 1..total_seats")
    price_per_seat: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    organizer_name: Optional[str] = Field(None, max_length=255)
    category_ids: list[str] = Field(default_factory=list, description="Category identifiers")

    @field_validator("starts_at")
    @classmethod
    def normalize_starts_at(cls, v):
        return _as_utc(v)


class EventCreate(EventBase):
    """Schema for creating a new event."""

    status: EventStatus = Field(default=EventStatus.DRAFT)

    @field_validator("starts_at")
    @classmethod
    def starts_at_must_be_future(cls, v):
        v = _as_utc(v)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Event start must be in the future")
        return v


class EventUpdate(BaseModel):
    """Schema for updating an existing event; omitted fields are unchanged."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    starts_at: Optional[datetime] = None
    total_seats: Optional[int] = Field(None, gt=0, le=100_000)
    price_per_seat: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    organizer_name: Optional[str] = Field(None, max_length=255)
    category_ids: Optional[list[str]] = None
    status: Optional[EventStatus] = None

    @field_validator("starts_at")
    @classmethod
    def normalize_starts_at(cls, v):
        return _as_utc(v) if v is not None else v


class EventStatusUpdate(BaseModel):
    status: EventStatus


class EventResponse(EventBase):
    """Schema for event response."""

    id: UUID
    status: EventStatus
    image_url: Optional[str] = None
    available_seats: int
    taken_seats: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("taken_seat_ids", "taken_seats"),
        description="Sold seat ids in seat order",
    )
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventListResponse(BaseModel):
    """Schema for paginated event list response."""

    events: list[EventResponse]
    total: int
    page: int
    size: int
    pages: int


class EventCollectionResponse(BaseModel):
    """A short curated list of events such as upcoming or trending."""

    events: list[EventResponse]
    count: int


class EventFilters(BaseModel):
    """Schema for event filtering parameters."""

    search: Optional[str] = Field(None, description="Search in title, description or location")
    category_id: Optional[str] = Field(None, description="Only events tagged with this category")
    location: Optional[str] = Field(None, description="Filter by location")
    date_from: Optional[datetime] = Field(None, description="Events starting at or after this time")
    date_to: Optional[datetime] = Field(None, description="Events starting at or before this time")
    min_price: Optional[Decimal] = Field(None, ge=0, description="Minimum seat price")
    max_price: Optional[Decimal] = Field(None, ge=0, description="Maximum seat price")
    sort_by: Literal["starts_at", "price_per_seat", "title", "created_at"] = "starts_at"
    sort_order: Literal["asc", "desc"] = "asc"

    @field_validator("date_from", "date_to")
    @classmethod
    def normalize_dates(cls, v):
        return _as_utc(v) if v is not None else v

    @field_validator("max_price")
    @classmethod
    def max_price_greater_than_min(cls, v, info):
        if v is not None and info.data.get("min_price") is not None:
            if v < info.data["min_price"]:
                raise ValueError("max_price must be greater than or equal to min_price")
        return v

    @field_validator("date_to")
    @classmethod
    def date_to_after_date_from(cls, v, info):
        if v is not None and info.data.get("date_from") is not None:
            if v < info.data["date_from"]:
                raise ValueError("date_to must be after date_from")
        return v


class SeatAvailabilityResponse(BaseModel):
    """Seats that cannot be offered to a new hold."""

    event_id: UUID
    total_seats: int
    unavailable_seats: list[str]
    available_count: int
