"""
Pydantic schemas for API request/response validation
"""
from showbuddy.schemas.showing import ShowingCreate, ShowingResponse, ShowingListResponse
from showbuddy.schemas.seat import SeatResponse, SeatMapResponse
from showbuddy.schemas.hold import (
    HoldCreate,
    HoldResponse,
    HoldConfirm,
    PaymentProof,
    PaymentIntentResponse,
)
from showbuddy.schemas.booking import (
    BookingStatusUpdate,
    BookingResponse,
    BookingListResponse,
    BookingStats,
)

__all__ = [
    # Showings
    "ShowingCreate",
    "ShowingResponse",
    "ShowingListResponse",
    # Seats
    "SeatResponse",
    "SeatMapResponse",
    # Holds
    "HoldCreate",
    "HoldResponse",
    "HoldConfirm",
    "PaymentProof",
    "PaymentIntentResponse",
    # Bookings
    "BookingStatusUpdate",
    "BookingResponse",
    "BookingListResponse",
    "BookingStats",
]
