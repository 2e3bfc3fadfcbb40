"""
Seat model - the authoritative per-showing seat inventory.

Every state change is a compare-and-set UPDATE guarded on ``state`` (and
``hold_token`` where ownership matters), so two writers can never both win
the same seat.
"""
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from showbuddy.core.database import Base, utcnow


class SeatState(PyEnum):
    AVAILABLE = "available"
    HELD = "held"
    BOOKED = "booked"


class SeatTier(PyEnum):
    PREMIUM = "premium"
    REGULAR = "regular"
    ECONOMY = "economy"


class Seat(Base):
    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint('showing_id', 'seat_id', name='uq_showing_seat'),
        Index('ix_seats_hold_token', 'hold_token'),
    )

    id = Column(Integer, primary_key=True, index=True)
    showing_id = Column(Integer, ForeignKey("showings.id", ondelete="CASCADE"), nullable=False, index=True)
    seat_id = Column(String(8), nullable=False)  # 'A1', 'J12'
    row_label = Column(String(4), nullable=False)
    seat_number = Column(Integer, nullable=False)
    tier = Column(Enum(SeatTier), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    state = Column(Enum(SeatState), nullable=False, default=SeatState.AVAILABLE, index=True)
    hold_token = Column(String(64), nullable=True)  # kept after booking, links the seat to its booking
    hold_expires_at = Column(DateTime, nullable=True)  # NULL unless HELD
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    showing = relationship("Showing", back_populates="seats")

    def __repr__(self):
        return (f"<Seat(showing_id={self.showing_id}, seat='{self.seat_id}', "
                f"tier='{self.tier.value}', state='{self.state.value}')>")


def effective_state(state: SeatState, hold_expires_at, now: datetime) -> SeatState:
    """A HELD seat whose hold ran out is effectively AVAILABLE"""
    if state == SeatState.HELD and hold_expires_at is not None and hold_expires_at <= now:
        return SeatState.AVAILABLE
    return state
