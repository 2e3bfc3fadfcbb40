"""
Seat Inventory - the single writer of seat state

Concurrency model:
- Every transition is a compare-and-set UPDATE whose WHERE clause restates
  the state the caller expects (AVAILABLE, HELD-by-me, BOOKED-by-me). The
  row count tells whether every seat was won; if not, the transaction rolls
  back. Two requests for overlapping seats are ordered by whichever UPDATE
  commits first.
- Transactions are short and never span a network call to the payment
  provider.
- A HELD seat whose hold ran out counts as AVAILABLE everywhere (lazy
  expiry); the expiry worker cleans the rows up in the background.
"""
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.config import settings
from showbuddy.core.database import utcnow
from showbuddy.core.exceptions import (
    HoldExpiredError,
    HoldNotFoundError,
    SeatUnavailableError,
    ShowingNotFoundError,
    TooManyActiveHoldsError,
    ValidationError,
    seat_sort_key,
)
from showbuddy.core.metrics import (
    holds_created_total,
    hold_conflicts_total,
    holds_released_total,
    hold_duration_seconds,
    track_time,
)
from showbuddy.models import Hold, HoldStatus, Seat, SeatState, SeatTier, Showing
from showbuddy.models.seat import effective_state
from showbuddy.schemas.seat import SeatResponse
from showbuddy.services.cache_service import CacheService
import logging

logger = logging.getLogger(__name__)


def normalize_seat_ids(seat_ids: Iterable[str]) -> List[str]:
    """Upper-case, de-blank and validate a requested seat set"""
    normalized = [str(seat_id).strip().upper() for seat_id in seat_ids]

    if not normalized:
        raise ValidationError("At least one seat must be selected")

    if len(normalized) > settings.MAX_SEATS_PER_HOLD:
        raise ValidationError(
            f"Cannot hold more than {settings.MAX_SEATS_PER_HOLD} seats at once",
            max_seats=settings.MAX_SEATS_PER_HOLD,
        )

    duplicates = sorted({s for s in normalized if normalized.count(s) > 1})
    if duplicates:
        raise ValidationError("Seat ids must be unique", seat_ids=duplicates)

    return sorted(normalized, key=seat_sort_key)


class SeatInventory:
    """Seat state for every showing"""

    @staticmethod
    async def get_seat_map(
        db: AsyncSession,
        showing_id: int,
        now: Optional[datetime] = None,
    ) -> List[SeatResponse]:
        """
        Current effective state of every seat of a showing.

        Cache key: showing:{showing_id}:seats:v{generation} (raw rows, short
        TTL); every mutation bumps the generation. The effective state is
        computed after the cache so a cached HELD seat still flips to
        AVAILABLE the moment its hold runs out.
        """
        now = now or utcnow()
        generation = await CacheService.seat_generation(showing_id)
        rows = await CacheService.get_seat_rows(showing_id, generation)

        if rows is None:
            async with db.begin():
                showing = await db.get(Showing, showing_id)
                if showing is None:
                    raise ShowingNotFoundError(f"Showing {showing_id} not found")

                result = await db.execute(
                    select(
                        Seat.seat_id,
                        Seat.row_label,
                        Seat.seat_number,
                        Seat.tier,
                        Seat.price,
                        Seat.state,
                        Seat.hold_expires_at,
                    )
                    .where(Seat.showing_id == showing_id)
                    .order_by(Seat.row_label, Seat.seat_number)
                )
                rows = [
                    {
                        "seat_id": r.seat_id,
                        "row_label": r.row_label,
                        "seat_number": r.seat_number,
                        "tier": r.tier.value,
                        "price": str(r.price),
                        "state": r.state.value,
                        "hold_expires_at": r.hold_expires_at.isoformat() if r.hold_expires_at else None,
                    }
                    for r in result
                ]
            await CacheService.set_seat_rows(showing_id, generation, rows)

        seats = []
        for row in rows:
            expires_at = row["hold_expires_at"]
            state = effective_state(
                SeatState(row["state"]),
                datetime.fromisoformat(expires_at) if expires_at else None,
                now,
            )
            seats.append(
                SeatResponse(
                    seat_id=row["seat_id"],
                    row_label=row["row_label"],
                    seat_number=row["seat_number"],
                    tier=SeatTier(row["tier"]),
                    price=Decimal(row["price"]),
                    state=state,
                )
            )
        return seats

    @staticmethod
    @track_time(hold_duration_seconds)
    async def try_hold(
        db: AsyncSession,
        showing_id: int,
        seat_ids: Iterable[str],
        user_id: str,
        ttl_seconds: Optional[float] = None,
        now: Optional[datetime] = None,
        max_active_holds: Optional[int] = None,
    ) -> Hold:
        """
        Atomically move every requested seat to HELD under a new hold token.

        With ``max_active_holds`` set, the user's live holds are counted in
        the same transaction that claims the seats.

        Raises:
            TooManyActiveHoldsError: the user already has max_active_holds
            ValidationError: empty/oversized/duplicate set, or unknown seat ids
            SeatUnavailableError: some seats are held or booked by someone
                else; ``seat_ids`` names exactly those seats
        """
        seat_ids = normalize_seat_ids(seat_ids)
        now = now or utcnow()
        ttl = ttl_seconds if ttl_seconds is not None else settings.HOLD_DURATION_SECONDS
        expires_at = now + timedelta(seconds=ttl)
        token = secrets.token_urlsafe(24)

        async with db.begin():
            if max_active_holds is not None:
                active = await SeatInventory._count_active_holds(db, user_id, now)
                if active >= max_active_holds:
                    raise TooManyActiveHoldsError(
                        f"User already has {active} active holds",
                        max_active_holds=max_active_holds,
                    )

            # 1. Resolve seat ids and prices
            result = await db.execute(
                select(Seat.seat_id, Seat.price).where(
                    Seat.showing_id == showing_id,
                    Seat.seat_id.in_(seat_ids),
                )
            )
            prices: Dict[str, Decimal] = {r.seat_id: Decimal(r.price) for r in result}

            unknown = [s for s in seat_ids if s not in prices]
            if unknown:
                raise ValidationError(
                    f"Seats {', '.join(unknown)} do not exist in showing {showing_id}",
                    seat_ids=unknown,
                )

            # 2. Compare-and-set: AVAILABLE, or HELD by a hold that ran out
            claim = (
                update(Seat)
                .where(
                    Seat.showing_id == showing_id,
                    Seat.seat_id.in_(seat_ids),
                    or_(
                        Seat.state == SeatState.AVAILABLE,
                        and_(Seat.state == SeatState.HELD, Seat.hold_expires_at <= now),
                    ),
                )
                .values(
                    state=SeatState.HELD,
                    hold_token=token,
                    hold_expires_at=expires_at,
                    version=Seat.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            claimed = await db.execute(claim)

            # 3. All or nothing
            if claimed.rowcount != len(seat_ids):
                won = await db.execute(
                    select(Seat.seat_id).where(
                        Seat.showing_id == showing_id,
                        Seat.hold_token == token,
                    )
                )
                conflicting = set(seat_ids) - set(won.scalars())
                hold_conflicts_total.inc()
                logger.info(
                    f"Hold rejected for showing {showing_id}: {sorted(conflicting)} taken",
                    extra={"user_id": user_id, "showing_id": showing_id},
                )
                raise SeatUnavailableError(list(conflicting or seat_ids))

            # 4. Record the hold with server-side prices
            total_amount = sum(prices.values(), Decimal("0"))
            hold = Hold(
                token=token,
                showing_id=showing_id,
                user_id=user_id,
                seat_ids=seat_ids,
                unit_prices={s: str(prices[s]) for s in seat_ids},
                total_amount=total_amount,
                currency=settings.CURRENCY,
                status=HoldStatus.ACTIVE,
                created_at=now,
                expires_at=expires_at,
            )
            db.add(hold)

        await CacheService.invalidate_seats(showing_id)
        holds_created_total.inc()
        logger.info(
            f"Held {len(seat_ids)} seats on showing {showing_id} until {expires_at.isoformat()}",
            extra={"user_id": user_id, "showing_id": showing_id},
        )
        return hold

    @staticmethod
    async def confirm(
        db: AsyncSession,
        hold_token: str,
        now: Optional[datetime] = None,
    ) -> Hold:
        """
        Turn a live hold into BOOKED seats.

        Confirming an already-confirmed hold is a no-op so the coordinator can
        retry after a crash between confirm and the ledger write.

        Raises:
            HoldNotFoundError: unknown token
            HoldExpiredError: TTL elapsed, hold released, or seats reassigned
        """
        now = now or utcnow()
        expired_hold: Optional[Hold] = None

        async with db.begin():
            hold = await SeatInventory._load_hold_for_update(db, hold_token)

            if hold.status == HoldStatus.CONFIRMED:
                return hold

            if hold.status != HoldStatus.ACTIVE:
                raise HoldExpiredError(hold_token, f"Seat hold is {hold.status.value}")

            if hold.expires_at <= now:
                # Lazy expiry: release now, report after commit
                await SeatInventory._end_hold(db, hold, HoldStatus.EXPIRED)
                expired_hold = hold
            else:
                won_hold = await db.execute(
                    update(Hold)
                    .where(
                        Hold.token == hold_token,
                        Hold.status == HoldStatus.ACTIVE,
                        Hold.expires_at > now,
                    )
                    .values(status=HoldStatus.CONFIRMED)
                )
                if won_hold.rowcount != 1:
                    raise HoldExpiredError(hold_token)

                booked = await db.execute(
                    update(Seat)
                    .where(
                        Seat.showing_id == hold.showing_id,
                        Seat.hold_token == hold_token,
                        Seat.state == SeatState.HELD,
                    )
                    .values(
                        state=SeatState.BOOKED,
                        hold_expires_at=None,
                        version=Seat.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if booked.rowcount != len(hold.seat_ids):
                    raise HoldExpiredError(hold_token, "Held seats were reassigned after the hold ran out")

        await CacheService.invalidate_seats(hold.showing_id)

        if expired_hold is not None:
            holds_released_total.labels(reason="expired").inc()
            logger.info(
                f"Hold on showing {hold.showing_id} expired before confirmation",
                extra={"user_id": hold.user_id, "showing_id": hold.showing_id},
            )
            raise HoldExpiredError(hold_token)

        logger.info(
            f"Booked seats {hold.seat_ids} on showing {hold.showing_id}",
            extra={"user_id": hold.user_id, "showing_id": hold.showing_id},
        )
        return hold

    @staticmethod
    async def release(
        db: AsyncSession,
        hold_token: str,
        reason: str = "abandoned",
    ) -> bool:
        """
        Return held (not booked) seats to AVAILABLE.

        Idempotent: returns False when the hold was already released,
        expired or confirmed.
        """
        async with db.begin():
            hold = await SeatInventory._load_hold_for_update(db, hold_token)
            if hold.status != HoldStatus.ACTIVE:
                return False
            await SeatInventory._end_hold(db, hold, HoldStatus.RELEASED)

        await CacheService.invalidate_seats(hold.showing_id)
        holds_released_total.labels(reason=reason).inc()
        logger.info(
            f"Released hold on showing {hold.showing_id} ({reason})",
            extra={"user_id": hold.user_id, "showing_id": hold.showing_id},
        )
        return True

    @staticmethod
    async def release_booked(db: AsyncSession, hold_token: str) -> int:
        """
        Undo a confirm: seats booked through this hold go back to AVAILABLE
        and the hold is marked RELEASED. Used when no booking record could be
        written for a confirmed hold.
        """
        async with db.begin():
            hold = await SeatInventory._load_hold_for_update(db, hold_token)
            released = await SeatInventory.release_booked_seats(db, hold.showing_id, hold_token)
            hold.status = HoldStatus.RELEASED

        await CacheService.invalidate_seats(hold.showing_id)
        holds_released_total.labels(reason="compensation").inc()
        logger.warning(
            f"Released {released} booked seats on showing {hold.showing_id} without a booking",
            extra={"user_id": hold.user_id, "showing_id": hold.showing_id},
        )
        return released

    @staticmethod
    async def release_booked_seats(db: AsyncSession, showing_id: int, hold_token: str) -> int:
        """
        Free BOOKED seats owned by ``hold_token``.

        Runs inside the caller's transaction (booking cancellation releases
        seats in the same commit that cancels the booking). The caller must
        invalidate the seat cache after commit.
        """
        result = await db.execute(
            update(Seat)
            .where(
                Seat.showing_id == showing_id,
                Seat.hold_token == hold_token,
                Seat.state == SeatState.BOOKED,
            )
            .values(
                state=SeatState.AVAILABLE,
                hold_token=None,
                hold_expires_at=None,
                version=Seat.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def expire_holds(
        db: AsyncSession,
        now: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[Tuple[int, str, int]]:
        """
        Sweep ACTIVE holds past their expiry.

        Returns (showing_id, hold_token, seats_released) for every expired hold.
        """
        now = now or utcnow()
        expired = []

        async with db.begin():
            result = await db.execute(
                select(Hold)
                .where(Hold.status == HoldStatus.ACTIVE, Hold.expires_at <= now)
                .order_by(Hold.expires_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            for hold in result.scalars().all():
                released = await SeatInventory._end_hold(db, hold, HoldStatus.EXPIRED)
                expired.append((hold.showing_id, hold.token, released))

        for showing_id in {showing_id for showing_id, _, _ in expired}:
            await CacheService.invalidate_seats(showing_id)

        if expired:
            holds_released_total.labels(reason="expired").inc(len(expired))
            logger.info(f"Expired {len(expired)} holds")
        return expired

    @staticmethod
    async def get_hold(db: AsyncSession, hold_token: str) -> Hold:
        async with db.begin():
            hold = await db.get(Hold, hold_token, populate_existing=True)
        if hold is None:
            raise HoldNotFoundError(f"Hold {hold_token} not found")
        return hold

    @staticmethod
    async def count_active_holds(db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> int:
        async with db.begin():
            return await SeatInventory._count_active_holds(db, user_id, now or utcnow())

    @staticmethod
    async def attach_payment_intent(db: AsyncSession, hold_token: str, intent_id: str) -> Hold:
        async with db.begin():
            hold = await SeatInventory._load_hold_for_update(db, hold_token)
            hold.payment_intent_id = intent_id
        return hold

    # ==================== internals ====================

    @staticmethod
    async def _count_active_holds(db: AsyncSession, user_id: str, now: datetime) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(Hold)
            .where(
                Hold.user_id == user_id,
                Hold.status == HoldStatus.ACTIVE,
                Hold.expires_at > now,
            )
        )
        return result.scalar_one()

    @staticmethod
    async def _load_hold_for_update(db: AsyncSession, hold_token: str) -> Hold:
        hold = await db.get(Hold, hold_token, with_for_update=True, populate_existing=True)
        if hold is None:
            raise HoldNotFoundError(f"Hold {hold_token} not found")
        return hold

    @staticmethod
    async def _end_hold(db: AsyncSession, hold: Hold, status: HoldStatus) -> int:
        """ACTIVE hold -> RELEASED/EXPIRED, freeing seats it still holds"""
        ended = await db.execute(
            update(Hold)
            .where(Hold.token == hold.token, Hold.status == HoldStatus.ACTIVE)
            .values(status=status)
        )
        if ended.rowcount != 1:
            return 0

        freed = await db.execute(
            update(Seat)
            .where(
                Seat.showing_id == hold.showing_id,
                Seat.hold_token == hold.token,
                Seat.state == SeatState.HELD,
            )
            .values(
                state=SeatState.AVAILABLE,
                hold_token=None,
                hold_expires_at=None,
                version=Seat.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return freed.rowcount
