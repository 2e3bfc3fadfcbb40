"""
Seat map templates: the universe of seat ids a showing is created with.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterator, List, Tuple

from showbuddy.core.exceptions import ValidationError
from showbuddy.models.seat import SeatTier

TIER_PRICES: Dict[SeatTier, Decimal] = {
    SeatTier.PREMIUM: Decimal("300.00"),
    SeatTier.REGULAR: Decimal("200.00"),
    SeatTier.ECONOMY: Decimal("150.00"),
}


@dataclass(frozen=True)
class SeatMapTemplate:
    name: str
    rows: Tuple[str, ...]
    seats_per_row: int
    premium_rows: int  # counted from row A
    economy_rows: int  # counted from the back
    prices: Dict[SeatTier, Decimal] = field(default_factory=lambda: dict(TIER_PRICES))

    def tier_for_row(self, row_index: int) -> SeatTier:
        if row_index < self.premium_rows:
            return SeatTier.PREMIUM
        if row_index >= len(self.rows) - self.economy_rows:
            return SeatTier.ECONOMY
        return SeatTier.REGULAR

    def iter_seats(self) -> Iterator[Tuple[str, str, int, SeatTier, Decimal]]:
        """Yield (seat_id, row_label, seat_number, tier, price) in display order"""
        for row_index, row in enumerate(self.rows):
            tier = self.tier_for_row(row_index)
            for number in range(1, self.seats_per_row + 1):
                yield f"{row}{number}", row, number, tier, self.prices[tier]

    @property
    def capacity(self) -> int:
        return len(self.rows) * self.seats_per_row


TEMPLATES: Dict[str, SeatMapTemplate] = {
    # Ten rows of twelve: A-C premium, D-G regular, H-J economy
    "standard": SeatMapTemplate(
        name="standard",
        rows=tuple("ABCDEFGHIJ"),
        seats_per_row=12,
        premium_rows=3,
        economy_rows=3,
    ),
    "compact": SeatMapTemplate(
        name="compact",
        rows=tuple("ABCDE"),
        seats_per_row=8,
        premium_rows=1,
        economy_rows=1,
    ),
}


def get_template(name: str) -> SeatMapTemplate:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise ValidationError(
            f"Unknown seat map template '{name}'",
            available_templates=sorted(TEMPLATES),
        )


def list_templates() -> List[str]:
    return sorted(TEMPLATES)
