# tests/conftest.py

import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

# Point the app at a throwaway SQLite file before anything imports settings.
_DB_DIR = tempfile.mkdtemp(prefix="consultpay-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'consultpay.db')}"
os.environ["ENV"] = "test"
os.environ["CURRENCY"] = "GBP"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef"

import httpx
import pytest
from fastapi.testclient import TestClient

from app.directory.repository import upsert_profile
from app.errors import UpstreamFailure, ValidationError
from app.payments import ledger
from app.payments.model import FeeBreakdown
from app.providers.http import HttpClient
from app.providers.paypal import PayPalClient, set_paypal_client
from app.providers.stripe_checkout import CheckoutSession, StripeCheckout, set_card_processor
from app.schema import metadata
from db import create_schema, get_conn
from main import app
from security import issue_token
from services import metrics


STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_API_BASE = "https://paypal.test"

create_schema()


@dataclass
class AuthedUser:
    user_id: str
    role: str
    token: str

    @property
    def headers(self) -> Dict[str, str]:
        return _auth_headers(self.token)


def _auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------
# DB + Client
# ---------------------------

@pytest.fixture(autouse=True)
def _clean_state():
    with get_conn() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())
    metrics.reset()
    set_card_processor(None)
    set_paypal_client(None)
    yield
    set_card_processor(None)
    set_paypal_client(None)


@pytest.fixture(scope="session")
def client() -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


# ---------------------------
# Directory helpers
# ---------------------------

@pytest.fixture
def make_user() -> Callable[..., AuthedUser]:
    def _make(
        role: str,
        *,
        hourly_rate_cents: Optional[int] = None,
        payout_email: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AuthedUser:
        uid = user_id or f"{role}-{uuid.uuid4()}"
        with get_conn() as conn:
            upsert_profile(
                conn,
                profile_id=uid,
                role=role,
                display_name=f"Test {role}",
                hourly_rate_cents=hourly_rate_cents,
                payout_email=payout_email,
            )
        return AuthedUser(user_id=uid, role=role, token=issue_token(uid))

    return _make


@pytest.fixture
def patient(make_user) -> AuthedUser:
    return make_user("patient")


@pytest.fixture
def provider(make_user) -> AuthedUser:
    return make_user("provider", hourly_rate_cents=4000, payout_email="midwife@example.com")


@pytest.fixture
def admin(make_user) -> AuthedUser:
    return make_user("admin", hourly_rate_cents=6000, payout_email="platform@example.com")


@pytest.fixture
def paid_payment() -> Callable[..., Any]:
    """
    Open + confirm a payment for (payer, payee). Returns the confirmed Payment.
    """
    def _paid(payer_id: str, payee_id: str, *, rate: str = "40.00", minutes: int = 45, ref: Optional[str] = None):
        appointment_id = f"appt-{uuid.uuid4()}"
        with get_conn() as conn:
            ledger.open_payment(
                conn,
                appointment_id=appointment_id,
                payer_id=payer_id,
                payee_id=payee_id,
                hourly_rate=rate,
                duration_minutes=minutes,
            )
            result = ledger.confirm_paid(
                conn,
                appointment_id=appointment_id,
                processor_ref=ref or f"pi_{uuid.uuid4().hex[:12]}",
                source="test",
            )
        assert result.outcome == ledger.CONFIRMED
        return result.payment

    return _paid


# ---------------------------
# Card processor double
# ---------------------------

class FakeCardProcessor(StripeCheckout):
    """
    Real webhook signature checks; sessions and fee lookups kept in memory.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=STRIPE_WEBHOOK_SECRET)
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.fee = FeeBreakdown(fee_cents=66, net_cents=2934)
        self.fee_lookups: list = []
        self.fail_create = False

    def create_session(self, *, amount_cents, currency, product_name, metadata, customer_email=None):
        if self.fail_create:
            raise UpstreamFailure("CHECKOUT_START_FAILED", "Payment could not be started")
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions[session_id] = {
            "id": session_id,
            "payment_status": "unpaid",
            "currency": currency.lower(),
            "amount_total": amount_cents,
            "metadata": dict(metadata),
            "payment_intent": None,
        }
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    def complete(self, session_id: str, payment_intent: str = "pi_test_1") -> Dict[str, Any]:
        session = self.sessions[session_id]
        session["payment_status"] = "paid"
        session["payment_intent"] = payment_intent
        return session

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise ValidationError("INVALID_SESSION", "Checkout session not found")
        return dict(self.sessions[session_id])

    def fetch_fee_breakdown(self, payment_intent_id):
        self.fee_lookups.append(payment_intent_id)
        return self.fee if payment_intent_id else FeeBreakdown()


@pytest.fixture
def card_processor() -> FakeCardProcessor:
    processor = FakeCardProcessor()
    set_card_processor(processor)
    return processor


# ---------------------------
# Peer network double (httpx.MockTransport)
# ---------------------------

class PayPalStub:
    """
    Routes PayPal API paths to per-test behaviour. Each behaviour is either a
    (status, json) tuple or an exception instance to raise.
    """

    def __init__(self):
        self.token = (200, {"access_token": "A21-token", "expires_in": 3600})
        self.payout: Any = (201, {"batch_header": {"payout_batch_id": "BATCH-1", "batch_status": "PENDING"}})
        self.verify: Any = (200, {"verification_status": "SUCCESS"})
        self.calls: list = []

    def _respond(self, behaviour, request: httpx.Request) -> httpx.Response:
        if isinstance(behaviour, Exception):
            raise behaviour
        status, payload = behaviour
        return httpx.Response(status, json=payload, request=request)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((path, request))
        if path == "/v1/oauth2/token":
            return self._respond(self.token, request)
        if path == "/v1/payments/payouts":
            return self._respond(self.payout, request)
        if path == "/v1/notifications/verify-webhook-signature":
            return self._respond(self.verify, request)
        return httpx.Response(404, json={"name": "NOT_FOUND"}, request=request)

    def paths(self) -> list:
        return [p for p, _ in self.calls]

    def client(self) -> PayPalClient:
        http = HttpClient(timeout_s=2.0, transport=httpx.MockTransport(self.handler))
        return PayPalClient(
            http,
            client_id="client-id",
            client_secret="client-secret",
            api_base=PAYPAL_API_BASE,
            webhook_id="WH-TEST-1",
        )


@pytest.fixture
def paypal() -> PayPalStub:
    stub = PayPalStub()
    set_paypal_client(stub.client())
    return stub


@pytest.fixture
def paypal_stub() -> PayPalStub:
    """A stub that is not installed as the shared client."""
    return PayPalStub()


@pytest.fixture
def booked(client, card_processor, patient, provider) -> Dict[str, Any]:
    """A 45 minute consultation checked out through the API (gross 30.00)."""
    r = client.post(
        "/v1/checkout",
        json={
            "provider_id": provider.user_id,
            "starts_at": "2026-11-02T10:00:00Z",
            "ends_at": "2026-11-02T10:45:00Z",
        },
        headers=patient.headers,
    )
    assert r.status_code == 200, r.text
    return r.json()
