"""
Hold model - a time-limited lease on seats pending payment
"""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum, JSON

from showbuddy.core.database import Base, utcnow


class HoldStatus(PyEnum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class Hold(Base):
    __tablename__ = "holds"

    token = Column(String(64), primary_key=True)
    showing_id = Column(Integer, ForeignKey("showings.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    seat_ids = Column(JSON, nullable=False)  # ['A1', 'A2']
    unit_prices = Column(JSON, nullable=False)  # {'A1': '300.00'}
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(Enum(HoldStatus), nullable=False, default=HoldStatus.ACTIVE, index=True)
    payment_intent_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return (f"<Hold(showing_id={self.showing_id}, user_id={self.user_id}, "
                f"seats={self.seat_ids}, status='{self.status.value}')>")

    def is_expired(self, now) -> bool:
        return self.status == HoldStatus.ACTIVE and self.expires_at <= now

    def time_remaining_seconds(self, now) -> int:
        if self.status != HoldStatus.ACTIVE:
            return 0
        return max(0, int((self.expires_at - now).total_seconds()))
