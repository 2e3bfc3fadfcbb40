"""Pydantic schemas for Booking resources"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from showbuddy.models.booking import BookingStatus, PaymentMethod, PaymentStatus


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    booking_id: str
    showing_id: int
    user_id: str
    seat_ids: List[str]
    unit_prices: Dict[str, Decimal]
    total_amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: BookingStatus
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        """Convert Booking ORM model to response"""
        return cls(
            booking_id=booking.booking_id,
            showing_id=booking.showing_id,
            user_id=booking.user_id,
            seat_ids=booking.seat_ids,
            unit_prices={seat_id: Decimal(price) for seat_id, price in booking.unit_prices.items()},
            total_amount=booking.total_amount,
            currency=booking.currency,
            payment_method=booking.payment_method,
            payment_status=booking.payment_status,
            status=booking.status,
            created_at=booking.created_at,
            confirmed_at=booking.confirmed_at,
            cancelled_at=booking.cancelled_at,
            completed_at=booking.completed_at,
        )


class BookingListResponse(BaseModel):
    bookings: List[BookingResponse]
    total: int


class BookingStats(BaseModel):
    total_bookings: int = 0
    total_revenue: Decimal = Decimal("0")
    total_refunded: Decimal = Decimal("0")
    count_by_status: Dict[str, int] = Field(default_factory=dict)
