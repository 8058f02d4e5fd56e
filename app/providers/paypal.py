# app/providers/paypal.py
"""
Peer-network payout rail (PayPal Payouts API).

Only three calls are made: client-credentials token, payout batch
submission and webhook signature verification. Every call has a bounded
timeout; failures surface as UpstreamFailure so nothing is written for them.
"""
from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx

from app import money
from app.errors import UpstreamFailure, ValidationError
from app.providers.http import HttpClient
from settings import settings

logger = logging.getLogger("consultpay.paypal")

SIGNATURE_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-cert-url",
    "paypal-auth-algo",
    "paypal-transmission-sig",
)


class WebhookSignatureError(ValidationError):
    code = "INVALID_SIGNATURE"


@dataclass(frozen=True)
class PayoutSubmission:
    batch_id: Optional[str]
    batch_status: str

    @property
    def succeeded(self) -> bool:
        return self.batch_status == "SUCCESS"


class PayPalClient:
    def __init__(
        self,
        http: Optional[HttpClient] = None,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_base: str | None = None,
        webhook_id: str | None = None,
    ):
        self.http = http or HttpClient(timeout_s=float(settings.PAYPAL_HTTP_TIMEOUT_S))
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.api_base = (api_base or settings.PAYPAL_API_BASE).rstrip("/")
        self.webhook_id = webhook_id if webhook_id is not None else settings.PAYPAL_WEBHOOK_ID
        self._token: Optional[str] = None
        self._token_exp: float = 0.0

    # ------------------------------------------------------
    # Payouts
    # ------------------------------------------------------

    def submit_payout(
        self,
        *,
        request_id: str,
        amount_cents: int,
        currency: str,
        receiver: str,
    ) -> PayoutSubmission:
        """
        One item per batch, keyed by the payout request id on both the batch
        and the item so the webhook can find its way back.
        """
        token = self._get_token()
        body = {
            "sender_batch_header": {
                "sender_batch_id": request_id,
                "email_subject": settings.PAYOUT_EMAIL_SUBJECT,
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": money.format_amount(amount_cents), "currency": currency},
                    "receiver": receiver,
                    "note": "Consultation earnings payout",
                    "sender_item_id": request_id,
                }
            ],
        }
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        try:
            resp = self.http.post(f"{self.api_base}/v1/payments/payouts", headers=headers, json_body=body, debug=True)
        except httpx.TimeoutException:
            logger.error("paypal_payout_timeout request_id=%s", request_id)
            raise UpstreamFailure("PAYPAL_TIMEOUT", "Timed out initiating PayPal payout")
        except httpx.HTTPError as e:
            logger.error("paypal_payout_transport_error request_id=%s error=%s", request_id, type(e).__name__)
            raise UpstreamFailure("PAYPAL_UNAVAILABLE", "Failed to initiate PayPal payout")

        if not resp.ok:
            logger.error("paypal_payout_rejected request_id=%s http_status=%s", request_id, resp.status_code)
            raise UpstreamFailure("PAYPAL_PAYOUT_FAILED", "Failed to initiate PayPal payout")

        header = (resp.json or {}).get("batch_header") or {}
        submission = PayoutSubmission(
            batch_id=header.get("payout_batch_id"),
            batch_status=str(header.get("batch_status") or "PENDING").upper(),
        )
        logger.info(
            "paypal_payout_submitted request_id=%s batch_id=%s batch_status=%s",
            request_id,
            submission.batch_id,
            submission.batch_status,
        )
        return submission

    # ------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------

    def verify_webhook_signature(self, headers: Mapping[str, str], event: dict[str, Any]) -> None:
        """
        Delegates verification to PayPal. Raises WebhookSignatureError for any
        outcome other than SUCCESS, including timeouts.
        """
        if not self.webhook_id:
            raise WebhookSignatureError("WEBHOOK_NOT_CONFIGURED", "Missing PAYPAL_WEBHOOK_ID")

        values = {name: (headers.get(name) or "").strip() for name in SIGNATURE_HEADERS}
        if not all(values.values()):
            raise WebhookSignatureError("MISSING_SIGNATURE", "Missing PayPal signature headers")

        try:
            token = self._get_token()
        except UpstreamFailure as e:
            raise WebhookSignatureError("SIGNATURE_UNVERIFIABLE", e.message)

        body = {
            "transmission_id": values["paypal-transmission-id"],
            "transmission_time": values["paypal-transmission-time"],
            "cert_url": values["paypal-cert-url"],
            "auth_algo": values["paypal-auth-algo"],
            "transmission_sig": values["paypal-transmission-sig"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }
        try:
            resp = self.http.post(
                f"{self.api_base}/v1/notifications/verify-webhook-signature",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                json_body=body,
            )
        except httpx.TimeoutException:
            raise WebhookSignatureError("SIGNATURE_UNVERIFIABLE", "Timed out verifying PayPal webhook signature")
        except httpx.HTTPError:
            raise WebhookSignatureError("SIGNATURE_UNVERIFIABLE", "Failed to verify PayPal webhook signature")

        if not resp.ok:
            raise WebhookSignatureError("SIGNATURE_UNVERIFIABLE", "Failed to verify PayPal webhook signature")

        if (resp.json or {}).get("verification_status") != "SUCCESS":
            raise WebhookSignatureError("INVALID_SIGNATURE", "PayPal webhook signature verification failed")

    # ------------------------------------------------------
    # Auth
    # ------------------------------------------------------

    def _get_token(self) -> str:
        now = time.time()
        if self._token and now < (self._token_exp - 30):
            return self._token

        if not (self.client_id and self.client_secret):
            raise UpstreamFailure("PAYPAL_NOT_CONFIGURED", "Missing PAYPAL_CLIENT_ID or PAYPAL_CLIENT_SECRET")

        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        headers = {
            "Authorization": f"Basic {basic}",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        try:
            resp = self.http.post(
                f"{self.api_base}/v1/oauth2/token",
                headers=headers,
                form={"grant_type": "client_credentials"},
            )
        except httpx.TimeoutException:
            raise UpstreamFailure("PAYPAL_TIMEOUT", "Timed out authenticating with PayPal")
        except httpx.HTTPError:
            raise UpstreamFailure("PAYPAL_UNAVAILABLE", "Failed to authenticate with PayPal")

        token = (resp.json or {}).get("access_token") if resp.ok else None
        if not token:
            logger.error("paypal_auth_failed http_status=%s", resp.status_code)
            raise UpstreamFailure("PAYPAL_AUTH_FAILED", "Failed to authenticate with PayPal")

        self._token = token
        self._token_exp = now + int((resp.json or {}).get("expires_in") or 3600)
        return token


_CLIENT: Optional[PayPalClient] = None


def get_paypal_client() -> PayPalClient:
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = PayPalClient()
    return _CLIENT


def set_paypal_client(client: Optional[PayPalClient]) -> None:
    """Swap the shared client (tests, or after rotating credentials)."""
    global _CLIENT
    _CLIENT = client
