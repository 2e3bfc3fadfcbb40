"""Pydantic schemas for seat holds and payment"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

from showbuddy.core.database import utcnow
from showbuddy.models.booking import PaymentMethod
from showbuddy.models.hold import HoldStatus


class HoldCreate(BaseModel):
    showing_id: int = Field(..., gt=0)
    seat_ids: List[str] = Field(..., min_length=1, max_length=10)

    @field_validator("seat_ids")
    @classmethod
    def strip_seat_ids(cls, v: List[str]) -> List[str]:
        cleaned = [seat_id.strip().upper() for seat_id in v]
        if any(not seat_id for seat_id in cleaned):
            raise ValueError("seat ids must not be blank")
        return cleaned


class HoldResponse(BaseModel):
    hold_token: str
    showing_id: int
    seat_ids: List[str]
    unit_prices: Dict[str, Decimal]
    total_amount: Decimal
    currency: str
    status: HoldStatus
    created_at: datetime
    expires_at: datetime
    time_remaining_seconds: int = 0
    payment_intent_id: Optional[str] = None

    @classmethod
    def from_hold(cls, hold) -> "HoldResponse":
        return cls(
            hold_token=hold.token,
            showing_id=hold.showing_id,
            seat_ids=hold.seat_ids,
            unit_prices={seat_id: Decimal(price) for seat_id, price in hold.unit_prices.items()},
            total_amount=hold.total_amount,
            currency=hold.currency,
            status=hold.status,
            created_at=hold.created_at,
            expires_at=hold.expires_at,
            time_remaining_seconds=hold.time_remaining_seconds(utcnow()),
            payment_intent_id=hold.payment_intent_id,
        )


class PaymentIntentResponse(BaseModel):
    intent_id: str
    amount: Decimal
    currency: str
    client_params: Dict[str, Any] = Field(default_factory=dict)


class PaymentProof(BaseModel):
    intent_id: str = Field(..., min_length=1, max_length=255)
    signature: str = Field(..., min_length=1, max_length=255)


class HoldConfirm(BaseModel):
    payment_proof: PaymentProof
    payment_method: PaymentMethod = PaymentMethod.CARD
