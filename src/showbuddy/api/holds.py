"""Seat hold and payment API endpoints"""
from typing import Optional
from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from showbuddy.core.database import get_db
from showbuddy.core.exceptions import RequestInProgressError
from showbuddy.core.security import get_current_user_id
from showbuddy.schemas import (
    BookingResponse,
    HoldConfirm,
    HoldCreate,
    HoldResponse,
    PaymentIntentResponse,
)
from showbuddy.services import PaymentGateway, ReservationCoordinator, get_payment_gateway
from showbuddy.services.idempotency import idempotency_service
from showbuddy.middleware.rate_limiter import limiter

router = APIRouter()


@router.post("/holds", response_model=HoldResponse, status_code=201)
@limiter.limit("10/minute")
async def create_hold(
    request: Request,
    hold_data: HoldCreate,
    user_id: str = Depends(get_current_user_id),
    idempotency_key: Optional[str] = Header(None, alias="X-Idempotency-Key"),
    db: AsyncSession = Depends(get_db),
):
    """
    Hold seats for the current user

    All requested seats are held or none are. A 409 response lists the
    seats that were taken.

    Headers:
    - X-Idempotency-Key: Optional key; a retried request with the same key
      returns the original hold
    """
    if not idempotency_key:
        return HoldResponse.from_hold(
            await ReservationCoordinator.start_hold(
                db,
                showing_id=hold_data.showing_id,
                seat_ids=hold_data.seat_ids,
                user_id=user_id,
            )
        )

    key = idempotency_service.client_key(user_id, "start_hold", idempotency_key)

    existing_result = await idempotency_service.check_operation(key)
    if existing_result:
        return HoldResponse(**existing_result)

    lock_acquired = await idempotency_service.lock_operation(key, ttl=30)
    if not lock_acquired:
        raise RequestInProgressError("Hold request already in progress. Please wait.")

    try:
        hold = await ReservationCoordinator.start_hold(
            db,
            showing_id=hold_data.showing_id,
            seat_ids=hold_data.seat_ids,
            user_id=user_id,
        )
        response = HoldResponse.from_hold(hold)
        await idempotency_service.store_result(key, response.model_dump(mode="json"))
        return response
    finally:
        await idempotency_service.release_lock(key)


@router.get("/holds/{hold_token}", response_model=HoldResponse)
@limiter.limit("60/minute")
async def get_hold(
    request: Request,
    hold_token: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Hold state and seconds remaining"""
    hold = await ReservationCoordinator.get_hold(db, hold_token, user_id)
    return HoldResponse.from_hold(hold)


@router.post("/holds/{hold_token}/payment-intent", response_model=PaymentIntentResponse)
@limiter.limit("10/minute")
async def create_payment_intent(
    request: Request,
    hold_token: str,
    user_id: str = Depends(get_current_user_id),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """Open a payment intent for the hold total"""
    intent = await ReservationCoordinator.create_payment_intent(db, hold_token, user_id, gateway)
    return PaymentIntentResponse(
        intent_id=intent.intent_id,
        amount=intent.amount,
        currency=intent.currency,
        client_params=intent.client_params,
    )


@router.post("/holds/{hold_token}/confirm", response_model=BookingResponse)
@limiter.limit("10/minute")
async def confirm_hold(
    request: Request,
    hold_token: str,
    confirm_data: HoldConfirm,
    user_id: str = Depends(get_current_user_id),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    """
    Verify payment and confirm the booking

    Idempotent: retrying after a timeout returns the booking already made
    for this hold.
    """
    booking = await ReservationCoordinator.complete_payment(
        db,
        hold_token=hold_token,
        user_id=user_id,
        payment_proof=confirm_data.payment_proof.model_dump(),
        payment_method=confirm_data.payment_method,
        gateway=gateway,
    )
    return BookingResponse.from_booking(booking)


@router.delete("/holds/{hold_token}", status_code=204)
@limiter.limit("10/minute")
async def release_hold(
    request: Request,
    hold_token: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Release a hold; releasing an ended hold is a no-op"""
    await ReservationCoordinator.abandon(db, hold_token, user_id)
    return Response(status_code=204)
