"""
Event service for managing events, their images and cached reads.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, asc, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator, CacheKeyBuilder, CacheTTL, RedisCache
from ..models.booking import ACTIVE_STATUSES, Booking
from ..models.base import utcnow
from ..models.event import Event, EventCategory, EventStatus, EventTakenSeat
from ..models.seat_reservation import SeatReservation
from ..schemas.event import (
    EventCollectionResponse,
    EventCreate,
    EventFilters,
    EventListResponse,
    EventResponse,
    EventUpdate,
    SeatAvailabilityResponse,
)
from ..utils.exceptions import (
    DependencyError,
    EventHasBookingsError,
    EventNotFoundError,
    ValidationError,
)
from ..utils.seats import is_seat_number, sort_seats
from .category_service import CategoryService
from .image_store import S3ImageStore
from .seat_ledger import SeatLedger

logger = logging.getLogger(__name__)


def weekend_window(now: datetime) -> Tuple[datetime, datetime]:
    """Saturday 00:00 to Monday 00:00 of the current or coming weekend, in UTC."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): Monday 0, Saturday 5, so a Sunday looks back one day.
    start = midnight + timedelta(days=5 - now.weekday())
    return start, start + timedelta(days=2)


def month_end(now: datetime) -> datetime:
    """First instant of the next calendar month."""
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return (first + timedelta(days=32)).replace(day=1)


class EventService:
    """Service class for event management operations."""

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[RedisCache] = None,
        image_store: Optional[S3ImageStore] = None,
    ):
        self.db = db
        self.cache = cache
        self.image_store = image_store
        self.invalidator = CacheInvalidator(cache) if cache is not None else None
        self.categories = CategoryService(db, cache)

    async def create_event(self, event_data: EventCreate) -> Event:
        """
        Create an event.

        Raises:
            ValidationError: If a category slug is unknown
        """
        category_ids = await self.categories.require_known(event_data.category_ids)
        event = Event(
            title=event_data.title,
            description=event_data.description,
            location=event_data.location,
            starts_at=event_data.starts_at,
            total_seats=event_data.total_seats,
            price_per_seat=event_data.price_per_seat,
            organizer_name=event_data.organizer_name,
            status=event_data.status,
            taken_seat_rows=[],
            category_rows=[EventCategory(category_id=c) for c in category_ids],
        )

        self.db.add(event)
        await self.db.commit()

        if self.invalidator is not None:
            await self.invalidator.invalidate_event_lists()

        logger.info("Created event %s (%s)", event.id, event.title)
        return event

    async def get_event(self, event_id: UUID) -> Event:
        result = await self.db.execute(
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise EventNotFoundError(event_id)
        return event

    async def get_event_response(self, event_id: UUID) -> EventResponse:
        """
        Get a single event, served from cache when possible.

        Raises:
            EventNotFoundError: If event is not found
        """
        cache_key = CacheKeyBuilder.event_detail(event_id)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return EventResponse.model_validate(cached)

        response = EventResponse.model_validate(await self.get_event(event_id))

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.EVENT_DETAIL)
        return response

    async def list_events(
        self,
        filters: EventFilters,
        page: int = 1,
        size: int = 20,
        published_only: bool = True,
    ) -> EventListResponse:
        """
        List events with filtering, sorting and pagination, cached per query.

        Args:
            filters: Event filtering parameters
            page: Page number (1-based)
            size: Page size
            published_only: Hide DRAFT events

        Returns:
            A page of events with the total match count
        """
        params = filters.model_dump(mode="json")
        params.update(page=page, size=size, published_only=published_only)
        cache_key = CacheKeyBuilder.event_list(params)

        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return EventListResponse.model_validate(cached)

        conditions = []

        if published_only:
            conditions.append(Event.status == EventStatus.PUBLISHED)

        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(
                or_(
                    Event.title.ilike(search_term),
                    Event.description.ilike(search_term),
                    Event.location.ilike(search_term),
                )
            )

        if filters.location:
            conditions.append(Event.location.ilike(f"%{filters.location}%"))

        if filters.category_id:
            conditions.append(
                Event.id.in_(
                    select(EventCategory.event_id).where(EventCategory.category_id == filters.category_id)
                )
            )

        if filters.date_from:
            conditions.append(Event.starts_at >= filters.date_from)

        if filters.date_to:
            conditions.append(Event.starts_at <= filters.date_to)

        if filters.min_price is not None:
            conditions.append(Event.price_per_seat >= filters.min_price)

        if filters.max_price is not None:
            conditions.append(Event.price_per_seat <= filters.max_price)

        where_clause = and_(*conditions) if conditions else True

        total = await self.db.scalar(select(func.count(Event.id)).where(where_clause)) or 0

        order = asc if filters.sort_order == "asc" else desc
        sort_column = getattr(Event, filters.sort_by)
        result = await self.db.execute(
            select(Event)
            .where(where_clause)
            .order_by(order(sort_column), Event.id)
            .offset((page - 1) * size)
            .limit(size)
            .execution_options(populate_existing=True)
        )
        events = result.scalars().all()

        response = EventListResponse(
            events=[EventResponse.model_validate(event) for event in events],
            total=total,
            page=page,
            size=size,
            pages=math.ceil(total / size) if total else 0,
        )

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.EVENT_LIST)
        return response

    async def list_upcoming(self, limit: int = 20, now: Optional[datetime] = None) -> EventCollectionResponse:
        """Published events that have not started yet, soonest first."""
        now = now or utcnow()
        return await self._curated(
            {"view": "upcoming", "limit": limit},
            [Event.starts_at > now],
            limit,
        )

    async def list_by_category(self, slug: str, limit: int = 50) -> EventCollectionResponse:
        """
        Published events tagged with a category, soonest first.

        Raises:
            CategoryNotFoundError: If the slug is unknown
        """
        await self.categories.get_category(slug)
        return await self._curated(
            {"view": "category", "category_id": slug, "limit": limit},
            [Event.id.in_(select(EventCategory.event_id).where(EventCategory.category_id == slug))],
            limit,
        )

    async def list_weekend(self, limit: int = 20, now: Optional[datetime] = None) -> EventCollectionResponse:
        """Published events between now and the end of the coming Sunday (UTC)."""
        now = now or utcnow()
        start, end = weekend_window(now)
        return await self._curated(
            {"view": "weekend", "window": start.date().isoformat(), "limit": limit},
            [Event.starts_at >= max(start, now), Event.starts_at < end],
            limit,
        )

    async def list_this_month(self, limit: int = 20, now: Optional[datetime] = None) -> EventCollectionResponse:
        """Published events from now until the end of the current calendar month (UTC)."""
        now = now or utcnow()
        end = month_end(now)
        return await self._curated(
            {"view": "this-month", "window": now.strftime("%Y-%m"), "limit": limit},
            [Event.starts_at >= now, Event.starts_at < end],
            limit,
        )

    async def list_trending(self, limit: int = 10, now: Optional[datetime] = None) -> EventCollectionResponse:
        """Upcoming published events with the most sold seats."""
        now = now or utcnow()
        sold = (
            select(func.count(EventTakenSeat.id))
            .where(EventTakenSeat.event_id == Event.id)
            .correlate(Event)
            .scalar_subquery()
        )
        return await self._curated(
            {"view": "trending", "limit": limit},
            [Event.starts_at > now],
            limit,
            order_by=[desc(sold), asc(Event.starts_at), Event.id],
        )

    async def _curated(
        self,
        key_params: Dict[str, Any],
        conditions: List[Any],
        limit: int,
        order_by: Optional[List[Any]] = None,
    ) -> EventCollectionResponse:
        cache_key = CacheKeyBuilder.event_list(key_params)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return EventCollectionResponse.model_validate(cached)

        result = await self.db.execute(
            select(Event)
            .where(and_(Event.status == EventStatus.PUBLISHED, *conditions))
            .order_by(*(order_by or [asc(Event.starts_at), Event.id]))
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        events = [EventResponse.model_validate(event) for event in result.scalars().all()]
        response = EventCollectionResponse(events=events, count=len(events))

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.EVENT_LIST)
        return response

    async def update_event(self, event_id: UUID, event_data: EventUpdate) -> Event:
        """
        Update an existing event.

        Raises:
            EventNotFoundError: If event is not found
            ValidationError: If the new seat count cannot hold existing reservations
        """
        event = await self.get_event(event_id)
        update_data = event_data.model_dump(exclude_unset=True)

        if "total_seats" in update_data:
            await self._check_seat_count(event, update_data["total_seats"])

        category_ids = update_data.pop("category_ids", None)
        if category_ids is not None:
            event.set_categories(await self.categories.require_known(category_ids))

        for field, value in update_data.items():
            if value is None and field in {"title", "location", "starts_at", "total_seats", "price_per_seat", "status"}:
                continue
            setattr(event, field, value)

        await self.db.commit()
        await self._invalidate(event.id)
        return event

    async def set_status(self, event_id: UUID, status: EventStatus) -> Event:
        event = await self.get_event(event_id)
        event.status = status
        await self.db.commit()
        await self._invalidate(event.id)
        logger.info("Event %s is now %s", event.id, status.value)
        return event

    async def delete_event(self, event_id: UUID) -> None:
        """
        Delete an event that has no PENDING or CONFIRMED bookings.

        Finished bookings are kept and lose their event reference.

        Raises:
            EventNotFoundError: If event is not found
            EventHasBookingsError: If event has active bookings
        """
        event = await self.get_event(event_id)

        active = await self.db.scalar(
            select(func.count(Booking.id)).where(
                and_(Booking.event_id == event_id, Booking.status.in_(ACTIVE_STATUSES))
            )
        ) or 0
        if active > 0:
            raise EventHasBookingsError(event_id, active)

        image_url = event.image_url
        await self.db.execute(
            update(Booking)
            .where(Booking.event_id == event_id)
            .values(event_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(event)
        await self.db.commit()
        await self._invalidate(event_id)

        if image_url:
            await self._delete_image_quietly(image_url)
        logger.info("Deleted event %s", event_id)

    async def upload_image(self, event_id: UUID, data: bytes, filename: str, mime_type: str) -> Event:
        """Store a new event image and replace the previous one."""
        if self.image_store is None or not self.image_store.bucket:
            raise DependencyError("image storage", "image uploads are not configured")

        event = await self.get_event(event_id)
        previous_url = event.image_url

        event.image_url = await self.image_store.upload(data, filename, mime_type)
        await self.db.commit()
        await self._invalidate(event.id)

        if previous_url:
            await self._delete_image_quietly(previous_url)
        return event

    async def get_seat_availability(self, event_id: UUID) -> SeatAvailabilityResponse:
        event = await self.get_event(event_id)
        unavailable = await SeatLedger(self.db).unavailable_seats(event.id)
        return SeatAvailabilityResponse(
            event_id=event.id,
            total_seats=event.total_seats,
            unavailable_seats=sort_seats(unavailable),
            available_count=max(event.total_seats - len(unavailable), 0),
        )

    async def _check_seat_count(self, event: Event, new_total: int) -> None:
        result = await self.db.execute(
            select(SeatReservation.seat_id).where(SeatReservation.event_id == event.id)
        )
        reserved = set(result.scalars().all()) | event.taken_seats
        if new_total < len(reserved):
            raise ValidationError(
                f"Cannot reduce seats below the {len(reserved)} already reserved",
                field_errors={"total_seats": [f"must be at least {len(reserved)}"]}
            )
        numbered = [int(seat) for seat in reserved if is_seat_number(seat)]
        if numbered and max(numbered) > new_total:
            raise ValidationError(
                f"Seat {max(numbered)} is reserved and would fall outside the new seat range",
                field_errors={"total_seats": [f"must be at least {max(numbered)}"]}
            )

    async def _invalidate(self, event_id: UUID) -> None:
        if self.invalidator is not None:
            await self.invalidator.invalidate_event(event_id)

    async def _delete_image_quietly(self, url: str) -> None:
        if self.image_store is None or not self.image_store.bucket:
            return
        try:
            await self.image_store.delete(url)
        except DependencyError as e:
            logger.warning("Could not delete old event image %s: %s", url, e)
