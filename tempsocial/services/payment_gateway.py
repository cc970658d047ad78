"""Payment gateway integration (order creation and signature verification)"""

import asyncio
import hashlib
import hmac
import logging
import uuid
from typing import Any, Protocol

import stripe

from tempsocial.config import settings
from tempsocial.errors import DependencyError

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, Any]
    ) -> str:
        ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 over "order_id|payment_id", hex encoded"""
    return hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()


class StripeGateway:
    """Stripe-backed gateway; a PaymentIntent plays the role of the order"""

    def __init__(self, secret_key: str | None = None, signing_secret: str | None = None):
        # Configure Stripe
        stripe.api_key = secret_key or settings.stripe_secret_key
        self.stripe_client = stripe
        self.signing_secret = signing_secret or settings.stripe_signing_secret or ""

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, Any]
    ) -> str:
        try:
            intent = await asyncio.to_thread(
                self.stripe_client.PaymentIntent.create,
                amount=amount * 100,  # minor units
                currency=currency.lower(),
                description=notes.get("description") or receipt,
                metadata={"receipt": receipt, **{k: str(v) for k, v in notes.items()}},
            )
        except stripe.error.StripeError as e:
            logger.error(f"Stripe order creation failed for {receipt}: {e}")
            raise DependencyError("Failed to create payment order") from e

        logger.info(f"Created Stripe payment intent {intent['id']} for {receipt}")
        return intent["id"]

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.signing_secret:
            return False
        expected = compute_signature(self.signing_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)


class MockGateway:
    """Development gateway: fabricates order ids and signs with a local secret"""

    def __init__(self, secret: str = "dev-gateway-secret"):
        self.secret = secret

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict[str, Any]
    ) -> str:
        order_id = f"order_mock_{uuid.uuid4().hex[:14]}"
        logger.info(f"[DEV] Mock order {order_id} for {amount} {currency} ({receipt})")
        return order_id

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(self.secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)


def build_gateway() -> PaymentGateway | None:
    if settings.is_payments_configured():
        return StripeGateway()
    if settings.is_development:
        return MockGateway()
    logger.warning("Payment gateway not configured")
    return None
