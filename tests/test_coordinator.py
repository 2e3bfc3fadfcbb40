"""
Reservation coordinator: hold -> pay -> confirm, failures and compensation
"""
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from showbuddy.core.config import settings
from showbuddy.core.exceptions import (
    HoldExpiredError,
    HoldNotFoundError,
    LedgerWriteError,
    PaymentFailedError,
    PermissionDeniedError,
    SeatUnavailableError,
    ShowingNotFoundError,
    TooManyActiveHoldsError,
    UpstreamError,
)
from showbuddy.models import Booking, BookingStatus, HoldStatus, PaymentMethod, PaymentStatus, SeatState
from showbuddy.services import BookingLedger, MockPaymentGateway, ReservationCoordinator, SeatInventory

from conftest import payment_proof, seat_states


async def pay(db, hold, gateway, user_id=None):
    """Open an intent for the hold and complete the payment"""
    user_id = user_id or hold.user_id
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, user_id, gateway)
    return await ReservationCoordinator.complete_payment(
        db,
        hold.token,
        user_id,
        payment_proof(intent.intent_id, gateway),
        PaymentMethod.CARD,
        gateway,
    )


async def booking_count(db):
    async with db.begin():
        return (await db.execute(select(func.count()).select_from(Booking))).scalar_one()


class FlakyGateway(MockPaymentGateway):
    """Fails the first few verify calls with an upstream error"""

    def __init__(self, failures, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.verify_calls = 0

    async def verify_payment(self, intent_id, proof):
        self.verify_calls += 1
        if self.verify_calls <= self.failures:
            raise UpstreamError("Payment provider timed out")
        return await super().verify_payment(intent_id, proof)


@pytest.mark.asyncio
async def test_book_then_cancel_scenario(session_factory, db, showing, gateway):
    """
    A1, A2 premium at 300: hold for u1 totals 600, u2 cannot take A1,
    u1 pays, then cancels and the seats come back
    """
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["A1", "A2"], "u1")
    assert hold.total_amount == Decimal("600")

    async with session_factory() as other:
        with pytest.raises(SeatUnavailableError) as exc_info:
            await ReservationCoordinator.start_hold(other, showing.id, ["A1"], "u2")
    assert exc_info.value.seat_ids == ["A1"]

    booking = await pay(db, hold, gateway)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.SUCCESS
    assert booking.total_amount == Decimal("600")
    assert booking.seat_ids == ["A1", "A2"]
    assert booking.payment_intent_id == hold.payment_intent_id

    states = await seat_states(db, showing.id)
    assert states["A1"] == SeatState.BOOKED
    assert states["A2"] == SeatState.BOOKED

    cancelled = await ReservationCoordinator.change_booking_status(
        db, booking.booking_id, BookingStatus.CANCELLED, actor_id="u1", is_admin=False, gateway=gateway
    )

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert gateway.intents[booking.payment_intent_id].refunded is True

    states = await seat_states(db, showing.id)
    assert states["A1"] == SeatState.AVAILABLE
    assert states["A2"] == SeatState.AVAILABLE


@pytest.mark.asyncio
async def test_complete_payment_is_idempotent(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["B1"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)
    proof = payment_proof(intent.intent_id, gateway)

    first = await ReservationCoordinator.complete_payment(db, hold.token, "u1", proof, PaymentMethod.UPI, gateway)
    second = await ReservationCoordinator.complete_payment(db, hold.token, "u1", proof, PaymentMethod.UPI, gateway)

    assert first.booking_id == second.booking_id
    assert await booking_count(db) == 1


@pytest.mark.asyncio
async def test_declined_payment_releases_hold(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["C1", "C2"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)

    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(
            db,
            hold.token,
            "u1",
            {"intent_id": intent.intent_id, "signature": "forged"},
            PaymentMethod.CARD,
            gateway,
        )

    assert exc_info.value.details["reason"] == "bad_signature"
    assert (await SeatInventory.get_hold(db, hold.token)).status == HoldStatus.RELEASED
    states = await seat_states(db, showing.id)
    assert states["C1"] == SeatState.AVAILABLE
    assert states["C2"] == SeatState.AVAILABLE
    assert await booking_count(db) == 0


@pytest.mark.asyncio
async def test_amount_mismatch_fails_payment(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["C5"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)
    gateway.intents[intent.intent_id].amount = Decimal("1.00")

    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert exc_info.value.details["reason"] == "amount_mismatch"
    assert (await seat_states(db, showing.id))["C5"] == SeatState.AVAILABLE


@pytest.mark.asyncio
async def test_proof_for_another_intent_is_rejected(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["C7"], "u1")
    await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)
    other = await gateway.create_payment_intent(Decimal("300"), "INR", {})

    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(other.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert exc_info.value.details["reason"] == "intent_mismatch"


@pytest.mark.asyncio
async def test_paid_intent_cannot_confirm_another_hold(db, showing, gateway):
    """Proof for hold A replayed against hold B, which never opened an intent"""
    first = await ReservationCoordinator.start_hold(db, showing.id, ["C8"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, first.token, "u1", gateway)
    proof = payment_proof(intent.intent_id, gateway)
    await ReservationCoordinator.complete_payment(db, first.token, "u1", proof, PaymentMethod.CARD, gateway)

    second = await ReservationCoordinator.start_hold(db, showing.id, ["C9"], "u1")
    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(db, second.token, "u1", proof, PaymentMethod.CARD, gateway)

    assert exc_info.value.details["reason"] == "intent_mismatch"
    assert (await SeatInventory.get_hold(db, second.token)).status == HoldStatus.RELEASED
    assert (await seat_states(db, showing.id))["C9"] == SeatState.AVAILABLE
    assert await booking_count(db) == 1


@pytest.mark.asyncio
async def test_refunded_intent_cannot_confirm_a_hold(db, showing, gateway):
    first = await ReservationCoordinator.start_hold(db, showing.id, ["C10"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, first.token, "u1", gateway)
    proof = payment_proof(intent.intent_id, gateway)
    booking = await ReservationCoordinator.complete_payment(
        db, first.token, "u1", proof, PaymentMethod.CARD, gateway
    )
    await ReservationCoordinator.change_booking_status(
        db, booking.booking_id, BookingStatus.CANCELLED, actor_id="u1", is_admin=False, gateway=gateway
    )

    verification = await gateway.verify_payment(intent.intent_id, proof)
    assert verification.success is False
    assert verification.reason == "refunded"

    # Even with the refunded intent attached to it, a new hold is not confirmed
    second = await ReservationCoordinator.start_hold(db, showing.id, ["C11"], "u1")
    await SeatInventory.attach_payment_intent(db, second.token, intent.intent_id)

    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(db, second.token, "u1", proof, PaymentMethod.CARD, gateway)

    assert exc_info.value.details["reason"] == "refunded"
    assert (await seat_states(db, showing.id))["C11"] == SeatState.AVAILABLE
    assert await booking_count(db) == 1


@pytest.mark.asyncio
async def test_intent_opened_for_another_hold_is_rejected(db, showing, gateway):
    first = await ReservationCoordinator.start_hold(db, showing.id, ["C12"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, first.token, "u1", gateway)

    second = await ReservationCoordinator.start_hold(db, showing.id, ["D2"], "u1")
    await SeatInventory.attach_payment_intent(db, second.token, intent.intent_id)

    with pytest.raises(PaymentFailedError) as exc_info:
        await ReservationCoordinator.complete_payment(
            db, second.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert exc_info.value.details["reason"] == "intent_mismatch"
    assert (await seat_states(db, showing.id))["D2"] == SeatState.AVAILABLE
    # The hold the intent was opened for is untouched
    assert (await SeatInventory.get_hold(db, first.token)).status == HoldStatus.ACTIVE
    assert await booking_count(db) == 0


@pytest.mark.asyncio
async def test_upstream_outage_keeps_hold_active(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["D1"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)
    gateway.available = False

    with pytest.raises(UpstreamError):
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert (await SeatInventory.get_hold(db, hold.token)).status == HoldStatus.ACTIVE
    assert (await seat_states(db, showing.id))["D1"] == SeatState.HELD

    # Provider back: the same request now succeeds
    gateway.available = True
    booking = await ReservationCoordinator.complete_payment(
        db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
    )
    assert booking.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_verification_is_retried(db, showing):
    gateway = FlakyGateway(failures=2, secret="test-payment-secret")
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["D3"], "u1")

    booking = await pay(db, hold, gateway)

    assert booking.status == BookingStatus.CONFIRMED
    assert gateway.verify_calls == 3


@pytest.mark.asyncio
async def test_payment_after_expiry_is_refunded(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["E1"], "u1", ttl_seconds=2)
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)

    await asyncio.sleep(2.5)

    with pytest.raises(HoldExpiredError):
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert gateway.intents[intent.intent_id].refunded is True
    assert (await seat_states(db, showing.id))["E1"] == SeatState.AVAILABLE
    assert await booking_count(db) == 0

    # A retry keeps failing the same way
    with pytest.raises(HoldExpiredError):
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )


@pytest.mark.asyncio
async def test_ledger_failure_releases_seats_and_refunds(db, showing, gateway, monkeypatch):
    calls = []

    async def failing_create(*args, **kwargs):
        calls.append(args)
        raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))

    monkeypatch.setattr(BookingLedger, "create", staticmethod(failing_create))

    hold = await ReservationCoordinator.start_hold(db, showing.id, ["F1", "F2"], "u1")
    intent = await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)

    with pytest.raises(LedgerWriteError):
        await ReservationCoordinator.complete_payment(
            db, hold.token, "u1", payment_proof(intent.intent_id, gateway), PaymentMethod.CARD, gateway
        )

    assert len(calls) == settings.LEDGER_WRITE_RETRIES + 1
    assert gateway.intents[intent.intent_id].refunded is True
    assert (await SeatInventory.get_hold(db, hold.token)).status == HoldStatus.RELEASED

    states = await seat_states(db, showing.id)
    assert states["F1"] == SeatState.AVAILABLE
    assert states["F2"] == SeatState.AVAILABLE


@pytest.mark.asyncio
async def test_active_hold_limit(db, showing, monkeypatch):
    monkeypatch.setattr(settings, "MAX_ACTIVE_HOLDS_PER_USER", 2)

    await ReservationCoordinator.start_hold(db, showing.id, ["G1"], "u1")
    second_token = (await ReservationCoordinator.start_hold(db, showing.id, ["G2"], "u1")).token

    with pytest.raises(TooManyActiveHoldsError):
        await ReservationCoordinator.start_hold(db, showing.id, ["G3"], "u1")

    # Other users are unaffected, and releasing frees a slot
    await ReservationCoordinator.start_hold(db, showing.id, ["G4"], "u2")
    await ReservationCoordinator.abandon(db, second_token, "u1")
    await ReservationCoordinator.start_hold(db, showing.id, ["G3"], "u1")


@pytest.mark.asyncio
async def test_hold_on_unknown_showing(db):
    with pytest.raises(ShowingNotFoundError):
        await ReservationCoordinator.start_hold(db, 4242, ["A1"], "u1")


@pytest.mark.asyncio
async def test_holds_belong_to_their_owner(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["H1"], "u1")

    with pytest.raises(PermissionDeniedError):
        await ReservationCoordinator.get_hold(db, hold.token, "u2")

    with pytest.raises(PermissionDeniedError):
        await ReservationCoordinator.create_payment_intent(db, hold.token, "u2", gateway)

    with pytest.raises(PermissionDeniedError):
        await ReservationCoordinator.abandon(db, hold.token, "u2")

    with pytest.raises(HoldNotFoundError):
        await ReservationCoordinator.get_hold(db, "missing-token", "u1")


@pytest.mark.asyncio
async def test_abandon_releases_seats(db, showing, gateway):
    hold = await ReservationCoordinator.start_hold(db, showing.id, ["I1", "I2"], "u1")

    assert await ReservationCoordinator.abandon(db, hold.token, "u1") is True
    assert await ReservationCoordinator.abandon(db, hold.token, "u1") is False

    states = await seat_states(db, showing.id)
    assert states["I1"] == SeatState.AVAILABLE

    # An abandoned hold cannot be paid for
    with pytest.raises(HoldExpiredError):
        await ReservationCoordinator.create_payment_intent(db, hold.token, "u1", gateway)
