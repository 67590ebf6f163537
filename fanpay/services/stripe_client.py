"""Stripe Checkout sessions and webhook verification."""

import asyncio
from dataclasses import dataclass
from typing import Any

import orjson
import stripe

from fanpay.core.config import get_settings
from fanpay.core.exceptions import BadRequestError, UpstreamError
from fanpay.core.logging import get_logger

log = get_logger(__name__)

CHECKOUT_SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass
class CheckoutSession:
    id: str
    url: str | None


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str, tolerance: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    async def create_checkout_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        client_reference_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": amount_cents,
                        "product_data": {"name": product_name},
                    },
                }
            ],
            "metadata": metadata,
            # Copied onto the PaymentIntent so payment_intent.* events carry the record id
            "payment_intent_data": {"metadata": metadata},
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as e:
            log.error("stripe_checkout_create_failed", error=str(e))
            raise UpstreamError(f"Payment provider error: {e.user_message or 'checkout unavailable'}") from e
        return CheckoutSession(id=session.id, url=session.url)

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Session with its PaymentIntent expanded, as a plain dict."""
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve,
                session_id,
                api_key=self.secret_key,
                expand=["payment_intent"],
            )
        except stripe.InvalidRequestError as e:
            raise BadRequestError("Invalid session_id") from e
        except stripe.StripeError as e:
            log.error("stripe_checkout_retrieve_failed", session_id=session_id, error=str(e))
            raise UpstreamError("Payment provider error") from e
        return session.to_dict()

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve,
                payment_intent_id,
                api_key=self.secret_key,
            )
        except stripe.InvalidRequestError as e:
            raise BadRequestError("Invalid payment_intent_id") from e
        except stripe.StripeError as e:
            log.error("stripe_payment_intent_retrieve_failed", payment_intent_id=payment_intent_id, error=str(e))
            raise UpstreamError("Payment provider error") from e
        return intent.to_dict()

    def verify_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Check the Stripe-Signature header, then parse. The body is never parsed before this succeeds."""
        if not signature:
            raise BadRequestError("Missing stripe-signature")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise BadRequestError("Invalid signature") from e
        try:
            event = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise BadRequestError("Invalid payload") from e
        if not isinstance(event, dict):
            raise BadRequestError("Invalid payload")
        return event


def get_payment_gateway() -> StripeGateway:
    """FastAPI dependency; fails fast when the payment core is not configured."""
    settings = get_settings()
    settings.require_payments()
    return StripeGateway(
        settings.stripe_secret_key,
        settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance,
    )


def payment_intent_id(value: Any) -> str | None:
    """Session.payment_intent is an id or, when expanded, an object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id") or None
    return None
