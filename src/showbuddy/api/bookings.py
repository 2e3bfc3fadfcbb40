"""Bookings API endpoints"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.database import get_db
from showbuddy.core.exceptions import PermissionDeniedError
from showbuddy.core.security import CurrentUser, get_current_user
from showbuddy.models.booking import BookingStatus
from showbuddy.schemas import (
    BookingListResponse,
    BookingResponse,
    BookingStats,
    BookingStatusUpdate,
)
from showbuddy.services import (
    BookingLedger,
    PaymentGateway,
    ReservationCoordinator,
    get_payment_gateway,
)
from showbuddy.middleware.rate_limiter import limiter

router = APIRouter()


def _scope_user_id(user: CurrentUser, requested: Optional[str]) -> Optional[str]:
    """Admins may query any user (or all); everyone else only themselves"""
    if user.is_admin:
        return requested
    if requested and requested != user.user_id:
        raise PermissionDeniedError("Cannot read another user's bookings")
    return user.user_id


@router.get("/bookings", response_model=BookingListResponse)
@limiter.limit("30/minute")
async def list_bookings(
    request: Request,
    user_id: Optional[str] = Query(None, description="Filter by user (admin only for other users)"),
    status: Optional[BookingStatus] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List bookings, newest first"""
    scoped_user_id = _scope_user_id(user, user_id)

    if scoped_user_id:
        bookings = await BookingLedger.list_by_user(db, scoped_user_id, status=status)
    else:
        bookings = await BookingLedger.list_all(db, status=status)

    return BookingListResponse(
        bookings=[BookingResponse.from_booking(b) for b in bookings],
        total=len(bookings),
    )


# Declared before /bookings/{booking_id} so "stats" is not taken for an id
@router.get("/bookings/stats/summary", response_model=BookingStats)
@limiter.limit("30/minute")
async def booking_stats(
    request: Request,
    user_id: Optional[str] = Query(None),
    showing_id: Optional[int] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Aggregate booking statistics

    total_revenue counts successful, unrefunded payments only.
    """
    stats = await BookingLedger.aggregate_stats(
        db,
        user_id=_scope_user_id(user, user_id),
        showing_id=showing_id,
    )
    return BookingStats(**stats)


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
@limiter.limit("60/minute")
async def get_booking(
    request: Request,
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a specific booking"""
    booking = await BookingLedger.get_by_id(db, booking_id)
    if not user.is_admin and booking.user_id != user.user_id:
        raise PermissionDeniedError("Booking belongs to another user")
    return BookingResponse.from_booking(booking)


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
@limiter.limit("10/minute")
async def update_booking_status(
    request: Request,
    booking_id: str,
    update: BookingStatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """
    Move a booking to a new status

    Owners may cancel their own confirmed bookings; other transitions
    require the admin role.
    """
    booking = await ReservationCoordinator.change_booking_status(
        db,
        booking_id,
        update.status,
        actor_id=user.user_id,
        is_admin=user.is_admin,
        gateway=gateway,
    )
    return BookingResponse.from_booking(booking)


@router.delete("/bookings/{booking_id}", response_model=BookingResponse)
@limiter.limit("10/minute")
async def cancel_booking(
    request: Request,
    booking_id: str,
    user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking: seats are released and the payment refunded"""
    booking = await ReservationCoordinator.change_booking_status(
        db,
        booking_id,
        BookingStatus.CANCELLED,
        actor_id=user.user_id,
        is_admin=user.is_admin,
        gateway=gateway,
    )
    return BookingResponse.from_booking(booking)
