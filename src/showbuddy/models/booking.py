"""
Booking model - the ledger of confirmed and attempted purchases
"""
import secrets
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship

from showbuddy.core.database import Base, utcnow


class BookingStatus(PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(PyEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(PyEnum):
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"


# Legal status transitions; anything else is rejected
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}


def generate_booking_id() -> str:
    return f"BK{secrets.token_hex(5).upper()}"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(String(20), nullable=False, unique=True, index=True, default=generate_booking_id)
    hold_token = Column(String(64), nullable=False, unique=True)  # idempotency key
    showing_id = Column(Integer, ForeignKey("showings.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    seat_ids = Column(JSON, nullable=False)
    unit_prices = Column(JSON, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_intent_id = Column(String(255), nullable=True)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING, index=True)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    showing = relationship("Showing")
    status_changes = relationship(
        "BookingStatusChange",
        back_populates="booking",
        order_by="BookingStatusChange.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return (f"<Booking(booking_id='{self.booking_id}', user_id={self.user_id}, "
                f"status='{self.status.value}', total={self.total_amount})>")

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]


class BookingStatusChange(Base):
    """Append-only audit trail of booking status transitions"""
    __tablename__ = "booking_status_changes"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(Enum(BookingStatus), nullable=True)  # NULL for the creating entry
    to_status = Column(Enum(BookingStatus), nullable=False)
    changed_by = Column(String(64), nullable=False)
    changed_at = Column(DateTime, default=utcnow, nullable=False)

    booking = relationship("Booking", back_populates="status_changes")
