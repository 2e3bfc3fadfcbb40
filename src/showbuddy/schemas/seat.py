"""
Pydantic schemas for seat maps
"""
from decimal import Decimal
from typing import Dict, List
from pydantic import BaseModel, Field

from showbuddy.models.seat import SeatState, SeatTier


class SeatResponse(BaseModel):
    """One seat as the client sees it; hold tokens are never exposed"""
    seat_id: str = Field(..., description="Row letter + seat number, e.g. A1")
    row_label: str
    seat_number: int
    tier: SeatTier
    price: Decimal
    state: SeatState = Field(..., description="available, held or booked")


class SeatMapResponse(BaseModel):
    showing_id: int
    seats: List[SeatResponse]
    total_seats: int
    available_seats: int

    # Grouping by row for easier frontend rendering
    rows: Dict[str, List[SeatResponse]] = Field(default_factory=dict)
    tier_prices: Dict[str, Decimal] = Field(default_factory=dict)

    @classmethod
    def from_seats(cls, showing_id: int, seats: List[SeatResponse]) -> "SeatMapResponse":
        rows: Dict[str, List[SeatResponse]] = {}
        tier_prices: Dict[str, Decimal] = {}
        for seat in seats:
            rows.setdefault(seat.row_label, []).append(seat)
            tier_prices.setdefault(seat.tier.value, seat.price)

        return cls(
            showing_id=showing_id,
            seats=seats,
            total_seats=len(seats),
            available_seats=sum(1 for seat in seats if seat.state == SeatState.AVAILABLE),
            rows=rows,
            tier_prices=tier_prices,
        )
