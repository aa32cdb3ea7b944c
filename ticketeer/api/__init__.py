"""API endpoints for the Ticketeer booking backend."""

from fastapi import APIRouter
from .events import router as events_router
from .bookings import router as bookings_router
from .categories import router as categories_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(events_router)
api_router.include_router(bookings_router)
api_router.include_router(categories_router)

__all__ = ["api_router"]
