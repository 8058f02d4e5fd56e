# app/providers/stripe_checkout.py
"""
Card processor (Stripe Checkout). Hosted checkout sessions, session lookup
for the poll path, and webhook signature verification.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from app.errors import UpstreamFailure, ValidationError
from app.payments.model import FeeBreakdown
from settings import settings

logger = logging.getLogger("consultpay.stripe")


class StripeSignatureError(ValidationError):
    code = "INVALID_SIGNATURE"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str]


def _as_dict(obj: Any) -> dict[str, Any]:
    return obj if isinstance(obj, dict) else {}


class StripeCheckout:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout_s: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        # bounded network time; one retry for transient failures
        stripe.default_http_client = stripe.RequestsClient(
            timeout=float(timeout_s or settings.STRIPE_HTTP_TIMEOUT_S)
        )
        stripe.max_network_retries = 1

    def create_session(
        self,
        *,
        amount_cents: int,
        currency: str,
        product_name: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
    ) -> CheckoutSession:
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": int(amount_cents),
                        "product_data": {"name": product_name},
                    },
                }
            ],
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": f"{settings.SITE_URL}/appointments?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.SITE_URL}/appointments?checkout=cancelled",
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error(
                "stripe_checkout_create_failed appointment_id=%s error=%s",
                metadata.get("appointment_id"),
                type(e).__name__,
            )
            raise UpstreamFailure("CHECKOUT_START_FAILED", "Payment could not be started")

        return CheckoutSession(id=session["id"], url=session.get("url"))

    def retrieve_session(self, session_id: str) -> dict[str, Any]:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError:
            raise ValidationError("INVALID_SESSION", "Checkout session not found")
        except stripe.StripeError as e:
            logger.error("stripe_session_retrieve_failed session_id=%s error=%s", session_id, type(e).__name__)
            raise UpstreamFailure("PROCESSOR_UNAVAILABLE", "Could not reach the card processor")
        return _as_dict(session)

    def fetch_fee_breakdown(self, payment_intent_id: str | None) -> FeeBreakdown:
        """
        Best effort: the processor fee is informational, so any failure here
        yields an empty breakdown instead of blocking confirmation.
        """
        if not payment_intent_id:
            return FeeBreakdown()
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                expand=["latest_charge.balance_transaction"],
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.warning(
                "stripe_fee_lookup_failed payment_intent=%s error=%s",
                payment_intent_id,
                type(e).__name__,
            )
            return FeeBreakdown()

        charge = _as_dict(_as_dict(intent).get("latest_charge"))
        balance = _as_dict(charge.get("balance_transaction"))
        if "fee" not in balance:
            return FeeBreakdown()
        return FeeBreakdown(fee_cents=int(balance["fee"]), net_cents=int(balance.get("net") or 0))

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self.webhook_secret:
            raise StripeSignatureError("WEBHOOK_SECRET_NOT_CONFIGURED", "Webhook secret not configured")
        if not signature:
            raise StripeSignatureError("MISSING_SIGNATURE", "Missing Stripe signature")

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                tolerance=int(settings.STRIPE_WEBHOOK_TOLERANCE_S),
            )
        except stripe.SignatureVerificationError:
            raise StripeSignatureError("INVALID_SIGNATURE", "Webhook signature verification failed")
        except ValueError:
            raise ValidationError("INVALID_PAYLOAD", "Webhook payload is not valid JSON")

        # Signature checked; work with the plain payload from here on.
        return json.loads(payload)


_PROCESSOR: Optional[StripeCheckout] = None


def get_card_processor() -> StripeCheckout:
    global _PROCESSOR
    if _PROCESSOR is None:
        _PROCESSOR = StripeCheckout()
    return _PROCESSOR


def set_card_processor(processor: Optional[StripeCheckout]) -> None:
    global _PROCESSOR
    _PROCESSOR = processor
