"""
Background worker for expiring seat holds and completing past bookings
"""
import asyncio
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from showbuddy.core.config import settings
from showbuddy.core.database import AsyncSessionLocal
from showbuddy.services.inventory_service import SeatInventory
from showbuddy.services.ledger_service import BookingLedger
import logging

logger = logging.getLogger(__name__)


class ExpiryWorker:
    """
    Periodic sweep.

    Reads already treat an expired hold's seats as available; the sweep only
    brings the stored rows in line and keeps the holds table small.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, interval: Optional[float] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.interval = interval or settings.HOLD_EXPIRY_CHECK_INTERVAL_SECONDS
        self.running = False
        self.task = None

    async def start(self):
        """Start the background worker"""
        if self.running:
            logger.warning("Expiry worker already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"Expiry worker started (interval: {self.interval}s)")

    async def stop(self):
        """Stop the background worker"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Expiry worker stopped")

    async def run_once(self) -> Dict[str, int]:
        """One sweep: expire overdue holds, then complete bookings for started showings"""
        async with self.session_factory() as db:
            expired = await SeatInventory.expire_holds(db)

        async with self.session_factory() as db:
            completed = await BookingLedger.complete_past_bookings(db)

        return {
            "expired_holds": len(expired),
            "released_seats": sum(released for _, _, released in expired),
            "completed_bookings": len(completed),
        }

    async def _run(self):
        """Main worker loop"""
        while self.running:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry worker: {e}", exc_info=True)
                await asyncio.sleep(self.interval)


# Global worker instance
expiry_worker = ExpiryWorker()


async def start_expiry_worker():
    """Start the expiry worker"""
    await expiry_worker.start()


async def stop_expiry_worker():
    """Stop the expiry worker"""
    await expiry_worker.stop()
