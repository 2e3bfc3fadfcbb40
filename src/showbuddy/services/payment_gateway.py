"""
Payment collaborator.

The booking flow only needs three calls from a payment provider: open an
intent for an amount, verify a client's proof that the intent was paid, and
refund. ``MockPaymentGateway`` implements them in memory with a
Razorpay-style HMAC signature check so the full hold -> pay -> confirm flow
can run without a provider account.
"""
import hashlib
import hmac
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

from showbuddy.core.config import settings
from showbuddy.core.exceptions import UpstreamError
import logging

logger = logging.getLogger(__name__)


@dataclass
class PaymentIntent:
    intent_id: str
    amount: Decimal
    currency: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    client_params: Dict[str, Any] = field(default_factory=dict)
    refunded: bool = False


@dataclass
class PaymentVerification:
    success: bool
    amount_paid: Decimal
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway:
    """Interface the reservation coordinator depends on"""

    async def create_payment_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, Any]
    ) -> PaymentIntent:
        raise NotImplementedError

    async def verify_payment(self, intent_id: str, proof: Dict[str, Any]) -> PaymentVerification:
        raise NotImplementedError

    async def refund(self, intent_id: str) -> bool:
        raise NotImplementedError


def sign_intent(intent_id: str, secret: str = None) -> str:
    """Signature a client receives from the provider after paying an intent"""
    secret = secret or settings.PAYMENT_SECRET
    return hmac.new(secret.encode(), intent_id.encode(), hashlib.sha256).hexdigest()


class MockPaymentGateway(PaymentGateway):
    """In-memory provider; no real transactions occur"""

    def __init__(self, secret: str = None):
        self.secret = secret or settings.PAYMENT_SECRET
        self.intents: Dict[str, PaymentIntent] = {}
        self.available = True

    async def create_payment_intent(
        self, amount: Decimal, currency: str, metadata: Dict[str, Any]
    ) -> PaymentIntent:
        self._check_available()

        intent_id = f"pi_mock_{uuid.uuid4().hex[:16]}"
        intent = PaymentIntent(
            intent_id=intent_id,
            amount=Decimal(amount),
            currency=currency,
            metadata=dict(metadata),
            client_params={
                "amount_minor": int(Decimal(amount) * 100),  # paise
                "currency": currency,
                "mock": True,
            },
        )
        self.intents[intent_id] = intent
        logger.info(f"Mock payment intent {intent_id} for {amount} {currency}")
        return intent

    async def verify_payment(self, intent_id: str, proof: Dict[str, Any]) -> PaymentVerification:
        self._check_available()

        intent = self.intents.get(intent_id)
        if intent is None:
            return PaymentVerification(success=False, amount_paid=Decimal("0"), reason="unknown_intent")

        if proof.get("intent_id") != intent_id:
            return PaymentVerification(success=False, amount_paid=Decimal("0"), reason="intent_mismatch")

        expected = sign_intent(intent_id, self.secret)
        if not hmac.compare_digest(expected, str(proof.get("signature", ""))):
            return PaymentVerification(success=False, amount_paid=Decimal("0"), reason="bad_signature")

        if intent.refunded:
            return PaymentVerification(success=False, amount_paid=Decimal("0"), reason="refunded")

        return PaymentVerification(success=True, amount_paid=intent.amount, metadata=dict(intent.metadata))

    async def refund(self, intent_id: str) -> bool:
        self._check_available()

        intent = self.intents.get(intent_id)
        if intent is None:
            return False
        intent.refunded = True
        logger.info(f"Mock refund for {intent_id}")
        return True

    def _check_available(self):
        if not self.available:
            raise UpstreamError("Payment provider unavailable")


payment_gateway = MockPaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """Dependency to get the payment gateway"""
    return payment_gateway
