"""
Booking Ledger - durable record of bookings and their status history
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.database import utcnow
from showbuddy.core.exceptions import (
    BookingNotFoundError,
    DuplicateBookingError,
    IllegalTransitionError,
    PermissionDeniedError,
)
from showbuddy.core.metrics import bookings_cancelled_total, bookings_completed_total
from showbuddy.models import (
    Booking,
    BookingStatus,
    BookingStatusChange,
    PaymentMethod,
    PaymentStatus,
    Showing,
)
from showbuddy.services.cache_service import CacheService
from showbuddy.services.inventory_service import SeatInventory
import logging

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class BookingDetails:
    """Everything the ledger needs to record a booking for a hold"""
    showing_id: int
    user_id: str
    seat_ids: List[str]
    unit_prices: Dict[str, Decimal]
    currency: str
    payment_method: PaymentMethod
    payment_intent_id: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.SUCCESS


class BookingLedger:
    """Service for booking records"""

    @staticmethod
    async def create(db: AsyncSession, hold_token: str, details: BookingDetails) -> Booking:
        """
        Record the booking for a hold.

        Idempotent on ``hold_token``: a repeated call returns the booking
        already recorded, including when two calls race and the second one
        loses on the unique constraint. The total is always recomputed here
        from the unit prices.

        Raises:
            DuplicateBookingError: the token is already used by a booking for
                a different user or showing
        """
        try:
            async with db.begin():
                existing = await BookingLedger._find_by_hold_token(db, hold_token)
                if existing is not None:
                    return BookingLedger._check_same_booking(existing, hold_token, details)

                now = utcnow()
                booking = Booking(
                    hold_token=hold_token,
                    showing_id=details.showing_id,
                    user_id=details.user_id,
                    seat_ids=list(details.seat_ids),
                    unit_prices={seat_id: str(price) for seat_id, price in details.unit_prices.items()},
                    total_amount=sum((Decimal(p) for p in details.unit_prices.values()), Decimal("0")),
                    currency=details.currency,
                    payment_method=details.payment_method,
                    payment_intent_id=details.payment_intent_id,
                    status=details.status,
                    payment_status=details.payment_status,
                    created_at=now,
                    updated_at=now,
                    confirmed_at=now if details.status == BookingStatus.CONFIRMED else None,
                )
                db.add(booking)
                await db.flush()

                db.add(BookingStatusChange(
                    booking_id=booking.id,
                    from_status=None,
                    to_status=booking.status,
                    changed_by=details.user_id,
                    changed_at=now,
                ))
        except IntegrityError:
            # Lost the race against a concurrent create for the same hold
            async with db.begin():
                existing = await BookingLedger._find_by_hold_token(db, hold_token)
            if existing is None:
                raise
            return BookingLedger._check_same_booking(existing, hold_token, details)

        logger.info(
            f"Booking {booking.booking_id} recorded: {booking.seat_ids} for {booking.total_amount} {booking.currency}",
            extra={"user_id": booking.user_id, "showing_id": booking.showing_id, "booking_id": booking.booking_id},
        )
        return booking

    @staticmethod
    async def update_status(
        db: AsyncSession,
        booking_id: str,
        new_status: BookingStatus,
        actor_id: str,
        is_admin: bool = False,
    ) -> Booking:
        """
        Apply a legal status transition.

        pending -> confirmed, confirmed -> completed, confirmed -> cancelled.
        Cancelling frees the booked seats in the same transaction and marks
        the payment refunded.

        Raises:
            BookingNotFoundError, PermissionDeniedError, IllegalTransitionError
        """
        released = 0

        async with db.begin():
            result = await db.execute(
                select(Booking)
                .where(Booking.booking_id == booking_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            booking = result.scalar_one_or_none()

            if booking is None:
                raise BookingNotFoundError(f"Booking {booking_id} not found")

            if not is_admin:
                if booking.user_id != actor_id:
                    raise PermissionDeniedError("Booking belongs to another user")
                if new_status != BookingStatus.CANCELLED:
                    raise PermissionDeniedError("Only administrators can set this status")

            if not booking.can_transition_to(new_status):
                raise IllegalTransitionError(booking.status.value, new_status.value)

            now = utcnow()
            old_status = booking.status
            booking.status = new_status
            booking.updated_at = now

            if new_status == BookingStatus.CONFIRMED:
                booking.confirmed_at = now
            elif new_status == BookingStatus.COMPLETED:
                booking.completed_at = now
            elif new_status == BookingStatus.CANCELLED:
                booking.cancelled_at = now
                booking.payment_status = PaymentStatus.REFUNDED
                released = await SeatInventory.release_booked_seats(db, booking.showing_id, booking.hold_token)

            db.add(BookingStatusChange(
                booking_id=booking.id,
                from_status=old_status,
                to_status=new_status,
                changed_by=actor_id,
                changed_at=now,
            ))

        if new_status == BookingStatus.CANCELLED:
            await CacheService.invalidate_seats(booking.showing_id)
            bookings_cancelled_total.inc()
        elif new_status == BookingStatus.COMPLETED:
            bookings_completed_total.inc()

        logger.info(
            f"Booking {booking_id}: {old_status.value} -> {new_status.value}"
            + (f", released {released} seats" if released else ""),
            extra={"user_id": booking.user_id, "booking_id": booking_id},
        )
        return booking

    @staticmethod
    async def get_by_id(db: AsyncSession, booking_id: str) -> Booking:
        async with db.begin():
            result = await db.execute(select(Booking).where(Booking.booking_id == booking_id))
            booking = result.scalar_one_or_none()

        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    async def get_by_hold_token(db: AsyncSession, hold_token: str) -> Optional[Booking]:
        async with db.begin():
            return await BookingLedger._find_by_hold_token(db, hold_token)

    @staticmethod
    async def list_by_user(
        db: AsyncSession,
        user_id: str,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        """Get all bookings for a user, newest first"""
        return await BookingLedger.list_all(db, user_id=user_id, status=status)

    @staticmethod
    async def list_all(
        db: AsyncSession,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        query = select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc())

        if user_id:
            query = query.where(Booking.user_id == user_id)
        if status:
            query = query.where(Booking.status == status)

        async with db.begin():
            result = await db.execute(query)
            return list(result.scalars().all())

    @staticmethod
    async def aggregate_stats(
        db: AsyncSession,
        user_id: Optional[str] = None,
        showing_id: Optional[int] = None,
    ) -> Dict:
        """
        Totals over the ledger from a single grouped query.

        total_revenue counts bookings whose payment succeeded and was not
        refunded; total_refunded counts refunded ones.
        """
        query = select(
            Booking.status,
            Booking.payment_status,
            func.count(Booking.id).label("bookings"),
            func.coalesce(func.sum(Booking.total_amount), 0).label("amount"),
        ).group_by(Booking.status, Booking.payment_status)

        if user_id:
            query = query.where(Booking.user_id == user_id)
        if showing_id:
            query = query.where(Booking.showing_id == showing_id)

        async with db.begin():
            rows = (await db.execute(query)).all()

        stats = {
            "total_bookings": 0,
            "total_revenue": Decimal("0"),
            "total_refunded": Decimal("0"),
            "count_by_status": {status.value: 0 for status in BookingStatus},
        }
        for row in rows:
            amount = Decimal(str(row.amount))
            stats["total_bookings"] += row.bookings
            stats["count_by_status"][row.status.value] += row.bookings
            if row.payment_status == PaymentStatus.SUCCESS:
                stats["total_revenue"] += amount
            elif row.payment_status == PaymentStatus.REFUNDED:
                stats["total_refunded"] += amount

        return stats

    @staticmethod
    async def complete_past_bookings(db: AsyncSession, now: Optional[datetime] = None) -> List[str]:
        """Mark confirmed bookings whose showing has started as completed"""
        now = now or utcnow()
        today, current_time = now.date(), now.time()

        async with db.begin():
            result = await db.execute(
                select(Booking)
                .join(Showing, Showing.id == Booking.showing_id)
                .where(
                    Booking.status == BookingStatus.CONFIRMED,
                    or_(
                        Showing.show_date < today,
                        and_(Showing.show_date == today, Showing.show_time <= current_time),
                    ),
                )
                .with_for_update(of=Booking, skip_locked=True)
            )
            bookings = result.scalars().all()

            for booking in bookings:
                booking.status = BookingStatus.COMPLETED
                booking.completed_at = now
                booking.updated_at = now
                db.add(BookingStatusChange(
                    booking_id=booking.id,
                    from_status=BookingStatus.CONFIRMED,
                    to_status=BookingStatus.COMPLETED,
                    changed_by=SYSTEM_ACTOR,
                    changed_at=now,
                ))

        if bookings:
            bookings_completed_total.inc(len(bookings))
            logger.info(f"Completed {len(bookings)} bookings for past showings")
        return [booking.booking_id for booking in bookings]

    # ==================== internals ====================

    @staticmethod
    async def _find_by_hold_token(db: AsyncSession, hold_token: str) -> Optional[Booking]:
        result = await db.execute(
            select(Booking)
            .where(Booking.hold_token == hold_token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _check_same_booking(existing: Booking, hold_token: str, details: BookingDetails) -> Booking:
        if existing.user_id != details.user_id or existing.showing_id != details.showing_id:
            raise DuplicateBookingError(hold_token, existing.booking_id)
        logger.info(
            f"Booking for hold already recorded as {existing.booking_id}",
            extra={"booking_id": existing.booking_id},
        )
        return existing
