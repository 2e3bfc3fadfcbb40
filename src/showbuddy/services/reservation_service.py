"""
Reservation Coordinator - drives one booking attempt

    Selecting -> Held -> {Confirmed | Released | Expired}

Seat state changes go through SeatInventory and booking records through
BookingLedger. The coordinator owns the ordering between them and the payment
provider, and the compensation when a later step fails after an earlier one
succeeded.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.config import settings
from showbuddy.core.database import utcnow
from showbuddy.core.exceptions import (
    HoldExpiredError,
    LedgerWriteError,
    PaymentFailedError,
    PermissionDeniedError,
    UpstreamError,
)
from showbuddy.core.metrics import (
    bookings_confirmed_total,
    booking_confirmation_duration_seconds,
    payment_failures_total,
    track_time,
)
from showbuddy.core.retry import RetryConfig, retry_async
from showbuddy.models import Booking, BookingStatus, Hold, HoldStatus, PaymentMethod
from showbuddy.services.catalog_service import ShowingService
from showbuddy.services.inventory_service import SeatInventory
from showbuddy.services.ledger_service import BookingDetails, BookingLedger
from showbuddy.services.payment_gateway import PaymentGateway, PaymentIntent
import logging

logger = logging.getLogger(__name__)


def _retry_config(max_retries: int) -> RetryConfig:
    return RetryConfig(max_retries=max_retries, initial_delay=settings.RETRY_INITIAL_DELAY)


class ReservationCoordinator:
    """Hold -> pay -> confirm flow"""

    @staticmethod
    async def start_hold(
        db: AsyncSession,
        showing_id: int,
        seat_ids: Iterable[str],
        user_id: str,
        ttl_seconds: Optional[float] = None,
    ) -> Hold:
        """
        Place a hold for a user.

        Raises:
            ShowingNotFoundError, TooManyActiveHoldsError, ValidationError,
            SeatUnavailableError
        """
        await ShowingService.get_showing(db, showing_id)

        return await SeatInventory.try_hold(
            db,
            showing_id=showing_id,
            seat_ids=seat_ids,
            user_id=user_id,
            ttl_seconds=ttl_seconds,
            max_active_holds=settings.MAX_ACTIVE_HOLDS_PER_USER,
        )

    @staticmethod
    async def get_hold(db: AsyncSession, hold_token: str, user_id: str) -> Hold:
        hold = await SeatInventory.get_hold(db, hold_token)
        ReservationCoordinator._check_owner(hold, user_id)
        return hold

    @staticmethod
    async def create_payment_intent(
        db: AsyncSession,
        hold_token: str,
        user_id: str,
        gateway: PaymentGateway,
    ) -> PaymentIntent:
        """Open a payment intent for the hold's server-side total"""
        hold = await ReservationCoordinator.get_hold(db, hold_token, user_id)

        if hold.status != HoldStatus.ACTIVE or hold.is_expired(utcnow()):
            raise HoldExpiredError(hold_token)

        intent = await gateway.create_payment_intent(
            hold.total_amount,
            hold.currency,
            {"hold_token": hold.token, "showing_id": hold.showing_id, "user_id": hold.user_id},
        )
        await SeatInventory.attach_payment_intent(db, hold_token, intent.intent_id)

        logger.info(
            f"Payment intent {intent.intent_id} opened for {hold.total_amount} {hold.currency}",
            extra={"user_id": user_id, "showing_id": hold.showing_id},
        )
        return intent

    @staticmethod
    @track_time(booking_confirmation_duration_seconds)
    async def complete_payment(
        db: AsyncSession,
        hold_token: str,
        user_id: str,
        payment_proof: Dict[str, Any],
        payment_method: PaymentMethod,
        gateway: PaymentGateway,
    ) -> Booking:
        """
        Verify payment and turn the hold into a booking.

        Safe to retry: a hold that was already turned into a booking returns
        that booking.

        Raises:
            HoldNotFoundError, PermissionDeniedError, HoldExpiredError,
            PaymentFailedError, UpstreamError, LedgerWriteError
        """
        # 1. Load and check the hold
        hold = await ReservationCoordinator.get_hold(db, hold_token, user_id)

        if hold.status == HoldStatus.CONFIRMED:
            existing = await BookingLedger.get_by_hold_token(db, hold_token)
            if existing is not None:
                return existing
        elif hold.status != HoldStatus.ACTIVE:
            raise HoldExpiredError(hold_token, f"Seat hold is {hold.status.value}")

        intent_id = payment_proof.get("intent_id")

        # 2. The proof must be for the intent opened for this hold
        if not hold.payment_intent_id or intent_id != hold.payment_intent_id:
            await ReservationCoordinator._reject_payment(db, hold, "intent_mismatch")

        # 3. Verify outside any transaction
        try:
            verification = await retry_async(
                gateway.verify_payment,
                intent_id,
                payment_proof,
                config=_retry_config(settings.PAYMENT_VERIFY_RETRIES),
                retry_on_exceptions=(UpstreamError,),
            )
        except UpstreamError:
            payment_failures_total.labels(reason="upstream_error").inc()
            raise

        # 4. Declined, paid for another hold, or wrong amount
        if not verification.success:
            await ReservationCoordinator._reject_payment(db, hold, verification.reason or "declined")
        if verification.metadata.get("hold_token", hold_token) != hold_token:
            await ReservationCoordinator._reject_payment(db, hold, "intent_mismatch")
        if Decimal(verification.amount_paid) != Decimal(hold.total_amount):
            await ReservationCoordinator._reject_payment(db, hold, "amount_mismatch")

        # 5. Book the seats
        try:
            await SeatInventory.confirm(db, hold_token)
        except HoldExpiredError:
            await ReservationCoordinator._refund(gateway, intent_id, hold_token)
            raise

        # 6. Record the booking
        details = BookingDetails(
            showing_id=hold.showing_id,
            user_id=hold.user_id,
            seat_ids=hold.seat_ids,
            unit_prices={seat_id: Decimal(price) for seat_id, price in hold.unit_prices.items()},
            currency=hold.currency,
            payment_method=payment_method,
            payment_intent_id=intent_id,
        )
        try:
            booking = await retry_async(
                BookingLedger.create,
                db,
                hold_token,
                details,
                config=_retry_config(settings.LEDGER_WRITE_RETRIES),
                retry_on_exceptions=(SQLAlchemyError,),
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Booking could not be recorded, releasing seats: {e}",
                extra={"user_id": user_id, "showing_id": details.showing_id},
            )
            await SeatInventory.release_booked(db, hold_token)
            await ReservationCoordinator._refund(gateway, intent_id, hold_token)
            raise LedgerWriteError(
                "Booking could not be recorded; the seats were released and the payment refunded",
                hold_token=hold_token,
            ) from e

        bookings_confirmed_total.inc()
        return booking

    @staticmethod
    async def abandon(db: AsyncSession, hold_token: str, user_id: str) -> bool:
        """Client gave up on the hold; returns False if it had already ended"""
        await ReservationCoordinator.get_hold(db, hold_token, user_id)
        return await SeatInventory.release(db, hold_token, reason="abandoned")

    @staticmethod
    async def change_booking_status(
        db: AsyncSession,
        booking_id: str,
        new_status: BookingStatus,
        actor_id: str,
        is_admin: bool,
        gateway: PaymentGateway,
    ) -> Booking:
        """Ledger transition plus the refund a cancellation implies"""
        booking = await BookingLedger.update_status(
            db, booking_id, new_status, actor_id=actor_id, is_admin=is_admin
        )
        if new_status == BookingStatus.CANCELLED and booking.payment_intent_id:
            await ReservationCoordinator._refund(gateway, booking.payment_intent_id, booking.hold_token)
        return booking

    # ==================== internals ====================

    @staticmethod
    def _check_owner(hold: Hold, user_id: str):
        if hold.user_id != user_id:
            raise PermissionDeniedError("Hold belongs to another user")

    @staticmethod
    async def _reject_payment(db: AsyncSession, hold: Hold, reason: str):
        """Release the hold and raise PaymentFailedError"""
        payment_failures_total.labels(reason=reason).inc()
        await SeatInventory.release(db, hold.token, reason="payment_failed")
        logger.info(
            f"Payment rejected ({reason}); hold released",
            extra={"user_id": hold.user_id, "showing_id": hold.showing_id},
        )
        raise PaymentFailedError("Payment could not be verified", reason=reason)

    @staticmethod
    async def _refund(gateway: PaymentGateway, intent_id: Optional[str], hold_token: str):
        """Refund a captured payment; failures are logged for manual follow-up"""
        if not intent_id:
            return
        try:
            await retry_async(
                gateway.refund,
                intent_id,
                config=_retry_config(settings.PAYMENT_VERIFY_RETRIES),
                retry_on_exceptions=(UpstreamError,),
            )
        except UpstreamError as e:
            logger.error(
                f"Refund for payment intent {intent_id} failed: {e}",
                extra={"hold_token": hold_token},
            )
