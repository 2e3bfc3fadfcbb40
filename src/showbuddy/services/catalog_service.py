"""
Showing Catalog - read-mostly reference data
"""
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.exceptions import ConflictError, ShowingNotFoundError
from showbuddy.models import Seat, SeatState, Showing
from showbuddy.schemas.showing import ShowingCreate
from showbuddy.services.seat_maps import get_template
import logging

logger = logging.getLogger(__name__)


class ShowingService:
    """Service for showing lookups and creation"""

    @staticmethod
    async def create_showing(db: AsyncSession, data: ShowingCreate) -> Showing:
        """
        Create a showing and materialise its seats from the template.

        Showings are immutable afterwards; the seat rows they own are only
        ever mutated by the seat inventory.
        """
        template = get_template(data.seat_map_template)

        try:
            async with db.begin():
                showing = Showing(**data.model_dump())
                db.add(showing)
                await db.flush()

                db.add_all(
                    Seat(
                        showing_id=showing.id,
                        seat_id=seat_id,
                        row_label=row_label,
                        seat_number=number,
                        tier=tier,
                        price=price,
                        state=SeatState.AVAILABLE,
                    )
                    for seat_id, row_label, number, tier, price in template.iter_seats()
                )
        except IntegrityError:
            raise ConflictError(
                f"Theater {data.theater_id} already has a showing on "
                f"{data.show_date.isoformat()} at {data.show_time.isoformat()}"
            )

        logger.info(
            f"Created showing {showing.id} ({showing.movie_title}) with {template.capacity} seats",
            extra={"showing_id": showing.id},
        )
        return showing

    @staticmethod
    async def get_showing(db: AsyncSession, showing_id: int) -> Showing:
        async with db.begin():
            showing = await db.get(Showing, showing_id)

        if not showing:
            raise ShowingNotFoundError(f"Showing {showing_id} not found")
        return showing

    @staticmethod
    async def list_showings(
        db: AsyncSession,
        movie_id: Optional[str] = None,
        theater_id: Optional[str] = None,
        show_date: Optional[date] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Showing], int]:
        """List showings with pagination and filters"""
        query = select(Showing)

        if movie_id:
            query = query.where(Showing.movie_id == movie_id)
        if theater_id:
            query = query.where(Showing.theater_id == theater_id)
        if show_date:
            query = query.where(Showing.show_date == show_date)

        async with db.begin():
            count_query = select(func.count()).select_from(query.subquery())
            total = (await db.execute(count_query)).scalar_one()

            query = query.order_by(Showing.show_date.asc(), Showing.show_time.asc(), Showing.id.asc())
            query = query.offset((page - 1) * page_size).limit(page_size)
            showings = (await db.execute(query)).scalars().all()

        return list(showings), total
