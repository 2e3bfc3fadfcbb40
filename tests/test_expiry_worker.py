"""
Background sweep: expired holds and finished showings
"""
import asyncio
from datetime import timedelta

import pytest

from showbuddy.core.database import utcnow
from showbuddy.models import BookingStatus, HoldStatus
from showbuddy.services import BookingLedger, ExpiryWorker, SeatInventory

from test_ledger import book


@pytest.mark.asyncio
async def test_run_once(session_factory, db, showing, past_showing):
    stale = await SeatInventory.try_hold(
        db, showing.id, ["A1", "A2"], "u1", ttl_seconds=60, now=utcnow() - timedelta(minutes=5)
    )
    live = await SeatInventory.try_hold(db, showing.id, ["A3"], "u2")
    finished = await book(db, past_showing.id, ["B1"])

    worker = ExpiryWorker(session_factory=session_factory)
    summary = await worker.run_once()

    assert summary == {"expired_holds": 1, "released_seats": 2, "completed_bookings": 1}
    assert (await SeatInventory.get_hold(db, stale.token)).status == HoldStatus.EXPIRED
    assert (await SeatInventory.get_hold(db, live.token)).status == HoldStatus.ACTIVE
    assert (await BookingLedger.get_by_id(db, finished.booking_id)).status == BookingStatus.COMPLETED

    # Idle pass
    assert await worker.run_once() == {"expired_holds": 0, "released_seats": 0, "completed_bookings": 0}


@pytest.mark.asyncio
async def test_worker_loop_start_stop(session_factory, db, showing):
    hold = await SeatInventory.try_hold(
        db, showing.id, ["C1"], "u1", ttl_seconds=1, now=utcnow() - timedelta(seconds=30)
    )

    worker = ExpiryWorker(session_factory=session_factory, interval=0.05)
    await worker.start()
    await worker.start()  # second start is ignored
    await asyncio.sleep(0.5)
    await worker.stop()

    assert worker.running is False
    assert worker.task is None
    assert (await SeatInventory.get_hold(db, hold.token)).status == HoldStatus.EXPIRED
