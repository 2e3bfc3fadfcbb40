"""
SQLAlchemy models for the booking service

Import all models here so relationships resolve and metadata is complete.
"""
from showbuddy.core.database import Base

from showbuddy.models.showing import Showing
from showbuddy.models.seat import Seat, SeatState, SeatTier
from showbuddy.models.hold import Hold, HoldStatus
from showbuddy.models.booking import (
    Booking,
    BookingStatus,
    BookingStatusChange,
    PaymentMethod,
    PaymentStatus,
)

__all__ = [
    "Base",
    "Showing",
    "Seat",
    "SeatState",
    "SeatTier",
    "Hold",
    "HoldStatus",
    "Booking",
    "BookingStatus",
    "BookingStatusChange",
    "PaymentMethod",
    "PaymentStatus",
]
