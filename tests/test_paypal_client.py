import httpx
import pytest

from app.errors import UpstreamFailure
from app.providers.paypal import PayPalClient, WebhookSignatureError


SIGNED_HEADERS = {
    "paypal-transmission-id": "tx-1",
    "paypal-transmission-time": "2024-05-01T10:00:00Z",
    "paypal-cert-url": "https://api.paypal.test/cert.pem",
    "paypal-auth-algo": "SHA256withRSA",
    "paypal-transmission-sig": "c2lnbmF0dXJl",
}


def test_token_is_cached_between_calls(paypal_stub):
    client = paypal_stub.client()

    client.submit_payout(request_id="r1", amount_cents=100, currency="GBP", receiver="a@example.com")
    client.submit_payout(request_id="r2", amount_cents=100, currency="GBP", receiver="a@example.com")

    assert paypal_stub.paths().count("/v1/oauth2/token") == 1
    _, token_call = paypal_stub.calls[0]
    assert token_call.headers["Authorization"].startswith("Basic ")
    assert b"grant_type=client_credentials" in token_call.content


def test_missing_credentials():
    client = PayPalClient(
        client_id="",
        client_secret="",
        api_base="https://paypal.test",
        webhook_id="WH",
    )
    with pytest.raises(UpstreamFailure) as exc:
        client.submit_payout(request_id="r1", amount_cents=100, currency="GBP", receiver="a@example.com")
    assert exc.value.code == "PAYPAL_NOT_CONFIGURED"


def test_token_timeout(paypal_stub):
    paypal_stub.token = httpx.ConnectTimeout("slow")
    with pytest.raises(UpstreamFailure) as exc:
        paypal_stub.client().submit_payout(request_id="r1", amount_cents=100, currency="GBP", receiver="a@example.com")
    assert exc.value.code == "PAYPAL_TIMEOUT"


def test_submission_reports_batch_status(paypal_stub):
    paypal_stub.payout = (201, {"batch_header": {"payout_batch_id": "B-7", "batch_status": "success"}})

    submission = paypal_stub.client().submit_payout(
        request_id="r1", amount_cents=2550, currency="GBP", receiver="a@example.com"
    )

    assert submission.batch_id == "B-7"
    assert submission.succeeded


def test_transport_error_is_unavailable(paypal_stub):
    paypal_stub.payout = httpx.ConnectError("refused")
    with pytest.raises(UpstreamFailure) as exc:
        paypal_stub.client().submit_payout(request_id="r1", amount_cents=100, currency="GBP", receiver="a@example.com")
    assert exc.value.code == "PAYPAL_UNAVAILABLE"


def test_verify_signature_success(paypal_stub):
    paypal_stub.client().verify_webhook_signature(SIGNED_HEADERS, {"event_type": "X"})

    _, verify_call = paypal_stub.calls[-1]
    assert verify_call.url.path == "/v1/notifications/verify-webhook-signature"
    assert b'"webhook_id":"WH-TEST-1"' in verify_call.content.replace(b" ", b"")


def test_verify_signature_missing_headers(paypal_stub):
    headers = dict(SIGNED_HEADERS)
    headers.pop("paypal-transmission-sig")

    with pytest.raises(WebhookSignatureError) as exc:
        paypal_stub.client().verify_webhook_signature(headers, {})

    assert exc.value.code == "MISSING_SIGNATURE"
    assert paypal_stub.calls == []


def test_verify_signature_failure_status(paypal_stub):
    paypal_stub.verify = (200, {"verification_status": "FAILURE"})
    with pytest.raises(WebhookSignatureError) as exc:
        paypal_stub.client().verify_webhook_signature(SIGNED_HEADERS, {})
    assert exc.value.code == "INVALID_SIGNATURE"


def test_verify_signature_timeout_is_unverifiable(paypal_stub):
    paypal_stub.verify = httpx.ReadTimeout("slow")
    with pytest.raises(WebhookSignatureError) as exc:
        paypal_stub.client().verify_webhook_signature(SIGNED_HEADERS, {})
    assert exc.value.code == "SIGNATURE_UNVERIFIABLE"


def test_verify_signature_without_webhook_id(paypal_stub):
    client = paypal_stub.client()
    client.webhook_id = ""
    with pytest.raises(WebhookSignatureError) as exc:
        client.verify_webhook_signature(SIGNED_HEADERS, {})
    assert exc.value.code == "WEBHOOK_NOT_CONFIGURED"
