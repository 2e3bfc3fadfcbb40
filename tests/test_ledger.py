"""
Booking ledger: idempotent create, status machine, cancellation, stats
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from showbuddy.core.exceptions import (
    BookingNotFoundError,
    DuplicateBookingError,
    IllegalTransitionError,
    PermissionDeniedError,
)
from showbuddy.models import (
    Booking,
    BookingStatus,
    BookingStatusChange,
    PaymentMethod,
    PaymentStatus,
    SeatState,
)
from showbuddy.services import BookingDetails, BookingLedger, SeatInventory

from conftest import seat_states


def details_for(hold, **overrides):
    data = dict(
        showing_id=hold.showing_id,
        user_id=hold.user_id,
        seat_ids=hold.seat_ids,
        unit_prices={seat_id: Decimal(price) for seat_id, price in hold.unit_prices.items()},
        currency=hold.currency,
        payment_method=PaymentMethod.UPI,
        payment_intent_id="pi_test",
    )
    data.update(overrides)
    return BookingDetails(**data)


async def book(db, showing_id, seat_ids, user_id="u1"):
    """Hold, confirm and record a booking"""
    hold = await SeatInventory.try_hold(db, showing_id, seat_ids, user_id)
    await SeatInventory.confirm(db, hold.token)
    return await BookingLedger.create(db, hold.token, details_for(hold))


async def status_history(db, booking):
    async with db.begin():
        result = await db.execute(
            select(BookingStatusChange.from_status, BookingStatusChange.to_status)
            .where(BookingStatusChange.booking_id == booking.id)
            .order_by(BookingStatusChange.id)
        )
        return [(row.from_status, row.to_status) for row in result]


@pytest.mark.asyncio
async def test_create_records_confirmed_booking(db, showing):
    booking = await book(db, showing.id, ["A1", "A2"])

    assert booking.booking_id.startswith("BK")
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.SUCCESS
    assert booking.total_amount == Decimal("600")
    assert booking.payment_method == PaymentMethod.UPI
    assert booking.confirmed_at is not None
    assert await status_history(db, booking) == [(None, BookingStatus.CONFIRMED)]


@pytest.mark.asyncio
async def test_create_is_idempotent_on_hold_token(db, showing):
    hold = await SeatInventory.try_hold(db, showing.id, ["B1"], "u1")
    await SeatInventory.confirm(db, hold.token)

    first = await BookingLedger.create(db, hold.token, details_for(hold))
    second = await BookingLedger.create(db, hold.token, details_for(hold))

    assert first.booking_id == second.booking_id
    async with db.begin():
        count = (await db.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_create_with_same_token_for_other_user_is_duplicate(db, showing):
    hold = await SeatInventory.try_hold(db, showing.id, ["B2"], "u1")
    await SeatInventory.confirm(db, hold.token)
    booking = await BookingLedger.create(db, hold.token, details_for(hold))
    booking_id = booking.booking_id

    with pytest.raises(DuplicateBookingError) as exc_info:
        await BookingLedger.create(db, hold.token, details_for(hold, user_id="u2"))

    assert exc_info.value.booking_id == booking_id


@pytest.mark.asyncio
async def test_cancel_frees_seats_and_refunds(db, showing):
    booking = await book(db, showing.id, ["C1", "C2"])

    cancelled = await BookingLedger.update_status(db, booking.booking_id, BookingStatus.CANCELLED, actor_id="u1")

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.payment_status == PaymentStatus.REFUNDED
    assert cancelled.cancelled_at is not None

    states = await seat_states(db, showing.id)
    assert states["C1"] == SeatState.AVAILABLE
    assert states["C2"] == SeatState.AVAILABLE

    assert await status_history(db, booking) == [
        (None, BookingStatus.CONFIRMED),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    ]

    # Freed seats can be held again
    await SeatInventory.try_hold(db, showing.id, ["C1"], "u2")


@pytest.mark.asyncio
async def test_illegal_transitions_are_rejected(db, showing):
    booking = await book(db, showing.id, ["D1"])
    await BookingLedger.update_status(db, booking.booking_id, BookingStatus.CANCELLED, actor_id="u1")

    # cancelled -> confirmed
    with pytest.raises(IllegalTransitionError):
        await BookingLedger.update_status(
            db, booking.booking_id, BookingStatus.CONFIRMED, actor_id="admin", is_admin=True
        )

    # pending -> completed
    pending = await BookingLedger.create(
        db,
        "hold-pending",
        BookingDetails(
            showing_id=showing.id,
            user_id="u1",
            seat_ids=["D5"],
            unit_prices={"D5": Decimal("200")},
            currency="INR",
            payment_method=PaymentMethod.CARD,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
        ),
    )
    pending_id = pending.booking_id
    with pytest.raises(IllegalTransitionError):
        await BookingLedger.update_status(
            db, pending_id, BookingStatus.COMPLETED, actor_id="admin", is_admin=True
        )

    # pending -> confirmed -> completed is the legal path
    confirmed = await BookingLedger.update_status(
        db, pending_id, BookingStatus.CONFIRMED, actor_id="admin", is_admin=True
    )
    assert confirmed.status == BookingStatus.CONFIRMED
    completed = await BookingLedger.update_status(
        db, pending_id, BookingStatus.COMPLETED, actor_id="admin", is_admin=True
    )
    assert completed.status == BookingStatus.COMPLETED
    assert completed.completed_at is not None

    # completed is terminal
    with pytest.raises(IllegalTransitionError):
        await BookingLedger.update_status(
            db, pending_id, BookingStatus.CANCELLED, actor_id="admin", is_admin=True
        )


@pytest.mark.asyncio
async def test_update_status_permissions(db, showing):
    booking = await book(db, showing.id, ["E1"])
    booking_id = booking.booking_id

    with pytest.raises(PermissionDeniedError):
        await BookingLedger.update_status(db, booking_id, BookingStatus.CANCELLED, actor_id="u2")

    with pytest.raises(PermissionDeniedError):
        await BookingLedger.update_status(db, booking_id, BookingStatus.COMPLETED, actor_id="u1")

    with pytest.raises(BookingNotFoundError):
        await BookingLedger.update_status(db, "BKMISSING", BookingStatus.CANCELLED, actor_id="u1")

    # Failed attempts changed nothing
    unchanged = await BookingLedger.get_by_id(db, booking_id)
    assert unchanged.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_list_and_get(db, showing):
    first = await book(db, showing.id, ["F1"], user_id="u1")
    second = await book(db, showing.id, ["F2"], user_id="u1")
    other = await book(db, showing.id, ["F3"], user_id="u2")
    await BookingLedger.update_status(db, first.booking_id, BookingStatus.CANCELLED, actor_id="u1")

    mine = await BookingLedger.list_by_user(db, "u1")
    assert [b.booking_id for b in mine] == [second.booking_id, first.booking_id]

    confirmed = await BookingLedger.list_by_user(db, "u1", status=BookingStatus.CONFIRMED)
    assert [b.booking_id for b in confirmed] == [second.booking_id]

    everyone = await BookingLedger.list_all(db)
    assert {b.booking_id for b in everyone} == {first.booking_id, second.booking_id, other.booking_id}

    fetched = await BookingLedger.get_by_id(db, other.booking_id)
    assert fetched.user_id == "u2"

    with pytest.raises(BookingNotFoundError):
        await BookingLedger.get_by_id(db, "BKMISSING")


@pytest.mark.asyncio
async def test_stats_match_booking_totals(db, showing):
    premium = await book(db, showing.id, ["A1", "A2"], user_id="u1")  # 600
    regular = await book(db, showing.id, ["D1"], user_id="u2")  # 200
    economy = await book(db, showing.id, ["J1"], user_id="u1")  # 150
    await BookingLedger.update_status(db, premium.booking_id, BookingStatus.CANCELLED, actor_id="u1")

    stats = await BookingLedger.aggregate_stats(db)

    assert stats["total_bookings"] == 3
    assert stats["total_revenue"] == Decimal("350")
    assert stats["total_refunded"] == Decimal("600")
    assert stats["count_by_status"] == {
        "pending": 0,
        "confirmed": 2,
        "cancelled": 1,
        "completed": 0,
    }

    everything = await BookingLedger.list_all(db)
    assert stats["total_revenue"] + stats["total_refunded"] == sum(b.total_amount for b in everything)

    mine = await BookingLedger.aggregate_stats(db, user_id="u1")
    assert mine["total_bookings"] == 2
    assert mine["total_revenue"] == Decimal("150")
    assert regular.total_amount == Decimal("200")
    assert economy.total_amount == Decimal("150")


@pytest.mark.asyncio
async def test_stats_on_empty_ledger(db):
    stats = await BookingLedger.aggregate_stats(db)

    assert stats["total_bookings"] == 0
    assert stats["total_revenue"] == Decimal("0")
    assert set(stats["count_by_status"]) == {"pending", "confirmed", "cancelled", "completed"}


@pytest.mark.asyncio
async def test_complete_past_bookings(db, showing, past_showing):
    upcoming = await book(db, showing.id, ["A1"])
    finished = await book(db, past_showing.id, ["A1"])

    completed = await BookingLedger.complete_past_bookings(db)

    assert completed == [finished.booking_id]
    assert (await BookingLedger.get_by_id(db, finished.booking_id)).status == BookingStatus.COMPLETED
    assert (await BookingLedger.get_by_id(db, upcoming.booking_id)).status == BookingStatus.CONFIRMED

    # Nothing left to do on a second pass
    assert await BookingLedger.complete_past_bookings(db) == []
