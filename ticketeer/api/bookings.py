"""
Booking API endpoints: holds, confirmation, cancellation and refunds.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from ..schemas.booking import (
    BookingCreate,
    BookingView,
    ConfirmBookingRequest,
    CustomerInfoUpdate,
    MyBookingsResponse,
    SweepResultResponse,
    booking_view,
    my_booking_item,
)
from ..schemas.common import error_responses
from ..services.booking_service import BookingService
from ..services.expiry_sweeper import ExpirySweeper
from ..services.payment_service import PaymentService
from ..utils.auth import AuthenticatedUser, UserRole
from ..utils.dependencies import get_booking_service, get_current_user, get_sweeper, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"], responses=error_responses(400, 401, 503))


@router.post("/bookings/cleanup", response_model=SweepResultResponse)
async def cleanup_expired_bookings(
    current_user: AuthenticatedUser = Depends(require_roles(UserRole.ADMIN)),
    sweeper: ExpirySweeper = Depends(get_sweeper)
):
    """
    Run one expiry sweep now.

    Expires lapsed holds and reconciles event seat inventory. Reports
    ``skipped`` if a sweep is already in progress.
    """
    logger.info("Manual expiry sweep requested by %s", current_user.user_id)
    result = await sweeper.run_once()
    return SweepResultResponse(**result.to_dict())


@router.post("/bookings", response_model=BookingView, status_code=status.HTTP_201_CREATED, responses=error_responses(404, 409))
async def create_booking(
    request: BookingCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    """
    Hold seats for the current user.

    The hold lasts ``booking_hold_timeout_minutes``; confirm it with payment
    before then or it expires and the seats are released.
    """
    booking = await booking_service.create_hold(
        user_id=current_user.user_id,
        event_id=request.event_id,
        seats=request.seats,
        price_per_seat=request.price_per_seat,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
    )
    return booking_view(booking)


@router.get("/bookings/{booking_id}", response_model=BookingView)
async def get_booking(
    booking_id: UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    booking = await booking_service.get_booking(booking_id, current_user.user_id, is_admin=current_user.is_admin)
    return booking_view(booking)


@router.post("/bookings/{booking_id}/confirm", response_model=BookingView, responses=error_responses(403, 404, 409, 410))
async def confirm_booking(
    booking_id: UUID,
    request: ConfirmBookingRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    """
    Pay for a hold and turn it into a confirmed booking.

    Only the last four card digits and the cardholder name are stored.
    """
    payment_reference = PaymentService().capture(
        card_number=request.card_number,
        expiry_date=request.expiry_date,
        cvv=request.cvv,
        cardholder_name=request.cardholder_name,
    )
    booking = await booking_service.confirm(
        booking_id,
        current_user.user_id,
        payment_reference,
        recipient_email=current_user.email,
    )
    return booking_view(booking)


@router.put("/bookings/{booking_id}/customer-info", response_model=BookingView)
async def update_customer_info(
    booking_id: UUID,
    request: CustomerInfoUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    booking = await booking_service.update_contact_info(
        booking_id,
        current_user.user_id,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
    )
    return booking_view(booking)


@router.delete("/bookings/{booking_id}", response_model=BookingView, responses=error_responses(403, 404, 409))
async def cancel_booking(
    booking_id: UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Cancel a hold or a confirmed booking. Seats become available again."""
    booking = await booking_service.cancel(booking_id, current_user.user_id)
    return booking_view(booking)


@router.post("/bookings/{booking_id}/refund", response_model=BookingView, responses=error_responses(403, 404, 409))
async def refund_booking(
    booking_id: UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    """Refund a confirmed booking within the refund window."""
    booking = await booking_service.refund(
        booking_id,
        current_user.user_id,
        recipient_email=current_user.email,
    )
    return booking_view(booking)


@router.get("/my-bookings", response_model=MyBookingsResponse)
async def list_my_bookings(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service)
):
    """The current user's bookings, newest first, with an event summary."""
    rows = await booking_service.list_user_bookings(current_user.user_id, limit=limit, offset=offset)
    return MyBookingsResponse(
        bookings=[my_booking_item(booking, event) for booking, event in rows],
        limit=limit,
        offset=offset,
    )
