import json

import httpx
import pytest

from app.errors import Conflict, UpstreamFailure, ValidationError
from app.payouts import repository as payouts_repo
from app.payouts import store
from app.platform_fees import ledger as platform_fees
from app.providers.paypal import PayoutSubmission
from app.settlement import engine
from db import get_conn
from services import metrics


@pytest.fixture
def pending_request(patient, provider, paid_payment):
    paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        return store.create_for_holder(conn, provider.user_id)


def _status(request_id: str) -> str:
    with get_conn() as conn:
        return store.get(conn, request_id).status


def _peer_row(request_id: str):
    with get_conn() as conn:
        return payouts_repo.get_payout_payment(conn, request_id=request_id, rail=engine.PEER_NETWORK)


def test_submission_carries_request_id_and_amount(paypal, pending_request):
    result = engine.send_via_peer_network(pending_request.id)

    assert result.payout_status == "pending"
    assert result.request.status == "pending"

    _, payout_call = [c for c in paypal.calls if c[0] == "/v1/payments/payouts"][0]
    body = json.loads(payout_call.content)
    assert body["sender_batch_header"]["sender_batch_id"] == pending_request.id
    item = body["items"][0]
    assert item["sender_item_id"] == pending_request.id
    assert item["receiver"] == "midwife@example.com"
    assert item["amount"] == {"value": "25.50", "currency": "GBP"}

    row = _peer_row(pending_request.id)
    assert row["status"] == "pending"
    assert row["rail_reference"] == "BATCH-1"


def test_submission_timeout_leaves_request_pending(paypal, pending_request):
    paypal.payout = httpx.ReadTimeout("timed out")

    with pytest.raises(UpstreamFailure) as exc:
        engine.send_via_peer_network(pending_request.id)

    assert exc.value.code == "PAYPAL_TIMEOUT"
    assert _status(pending_request.id) == "pending"
    assert _peer_row(pending_request.id) is None
    assert metrics.get_counter("payout_settlements_total", rail="peer-network", result="submit_failed") == 1

    # retry once the network is back
    paypal.payout = (201, {"batch_header": {"payout_batch_id": "BATCH-2", "batch_status": "PENDING"}})
    result = engine.send_via_peer_network(pending_request.id)
    assert result.payout_status == "pending"


def test_token_failure_raises_upstream(paypal, pending_request):
    paypal.token = (401, {"error": "invalid_client"})

    with pytest.raises(UpstreamFailure) as exc:
        engine.send_via_peer_network(pending_request.id)

    assert exc.value.code == "PAYPAL_AUTH_FAILED"
    assert "/v1/payments/payouts" not in paypal.paths()
    assert _status(pending_request.id) == "pending"


def test_rejected_submission_raises_upstream(paypal, pending_request):
    paypal.payout = (422, {"name": "INSUFFICIENT_FUNDS"})

    with pytest.raises(UpstreamFailure) as exc:
        engine.send_via_peer_network(pending_request.id)

    assert exc.value.code == "PAYPAL_PAYOUT_FAILED"
    assert _status(pending_request.id) == "pending"


def test_successful_batch_settles_immediately(paypal, pending_request):
    paypal.payout = (201, {"batch_header": {"payout_batch_id": "BATCH-9", "batch_status": "SUCCESS"}})

    result = engine.send_via_peer_network(pending_request.id)

    assert result.payout_status == "paid"
    assert result.request.status == "paid"
    assert _peer_row(pending_request.id)["status"] == "paid"


def test_second_submission_conflicts(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)

    with pytest.raises(Conflict) as exc:
        engine.send_via_peer_network(pending_request.id)

    assert exc.value.code == "PAYOUT_ALREADY_SUBMITTED"
    assert paypal.paths().count("/v1/payments/payouts") == 1


def test_missing_destination(paypal, patient, make_user, paid_payment):
    holder = make_user("provider", hourly_rate_cents=4000)
    paid_payment(patient.user_id, holder.user_id)
    with get_conn() as conn:
        req = store.create_for_holder(conn, holder.user_id)

    with pytest.raises(ValidationError) as exc:
        engine.send_via_peer_network(req.id)

    assert exc.value.code == "DESTINATION_MISSING"
    assert paypal.calls == []


def test_not_pending_request_is_not_submitted(paypal, pending_request):
    with get_conn() as conn:
        store.reject(conn, pending_request.id)

    with pytest.raises(Conflict):
        engine.send_via_peer_network(pending_request.id)

    assert paypal.calls == []


def test_webhook_settles_pending_submission(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)

    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(
            conn, request_id=pending_request.id, outcome="paid", rail_reference="ITEM-1"
        )

    assert outcome.outcome == engine.APPLIED
    assert _status(pending_request.id) == "paid"
    row = _peer_row(pending_request.id)
    assert row["status"] == "paid"
    assert row["processed_at"] is not None

    with get_conn() as conn:
        balance = store.holder_balance(conn, pending_request.holder_id)
    assert balance.paid_cents == 2550
    assert balance.pending_cents == 0


def test_webhook_redelivery_is_noop(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)
    with get_conn() as conn:
        engine.apply_peer_webhook(conn, request_id=pending_request.id, outcome="paid")

    with get_conn() as conn:
        again = engine.apply_peer_webhook(conn, request_id=pending_request.id, outcome="paid")

    assert again.outcome == engine.ALREADY_APPLIED
    assert again.request_status == "paid"


def test_webhook_before_submission_is_recorded(paypal, pending_request):
    # network reports before our submit transaction committed
    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(conn, request_id=pending_request.id, outcome="paid")
    assert outcome.outcome == engine.APPLIED

    submission = PayoutSubmission(batch_id="BATCH-LATE", batch_status="PENDING")
    with get_conn() as conn:
        req = store.get(conn, pending_request.id)
        result = engine.record_peer_submission(conn, req, submission)

    assert result.request.status == "paid"
    row = _peer_row(pending_request.id)
    assert row["status"] == "paid"


def test_webhook_contradicting_manual_settlement_conflicts(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)
    with get_conn() as conn:
        engine.mark_paid_manually(conn, pending_request.id)

    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(conn, request_id=pending_request.id, outcome="failed")

    assert outcome.outcome == engine.CONFLICT
    assert outcome.request_status == "paid"
    assert _status(pending_request.id) == "paid"
    # the submission row keeps its last accepted state
    assert _peer_row(pending_request.id)["status"] == "pending"


def test_manual_then_peer_success_counts_paid_once(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)
    with get_conn() as conn:
        engine.mark_paid_manually(conn, pending_request.id)

    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(
            conn, request_id=pending_request.id, outcome="paid", rail_reference="ITEM-1"
        )
        balance = store.holder_balance(conn, pending_request.holder_id)

    assert outcome.outcome == engine.CONFLICT
    assert _peer_row(pending_request.id)["status"] == "pending"
    assert balance.paid_cents == pending_request.amount_cents == 2550
    assert balance.available_cents == 0


def test_failed_webhook_releases_reserved_payments(paypal, pending_request):
    engine.send_via_peer_network(pending_request.id)

    with get_conn() as conn:
        engine.apply_peer_webhook(conn, request_id=pending_request.id, outcome="failed")
        balance = store.holder_balance(conn, pending_request.holder_id)
        again = store.create_for_holder(conn, pending_request.holder_id)

    assert (balance.available_cents, balance.pending_cents, balance.paid_cents) == (2550, 0, 0)
    assert again.amount_cents == 2550


def test_submission_response_after_manual_settlement_is_not_recorded(paypal, pending_request):
    with get_conn() as conn:
        engine.mark_paid_manually(conn, pending_request.id)

    submission = PayoutSubmission(batch_id="BATCH-LATE", batch_status="SUCCESS")
    with get_conn() as conn:
        result = engine.record_peer_submission(conn, pending_request, submission)
        balance = store.holder_balance(conn, pending_request.holder_id)

    assert result.request.status == "paid"
    assert _peer_row(pending_request.id) is None
    assert balance.paid_cents == 2550
    assert metrics.get_counter("payout_settlements_total", rail="peer-network", result="late_submission") == 1


def test_failed_webhook_releases_platform_fees(paypal, patient, admin, paid_payment):
    paid_payment(patient.user_id, admin.user_id)
    with get_conn() as conn:
        req = store.create_platform_request(conn, admin_id=admin.user_id)
    engine.send_via_peer_network(req.id)

    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(conn, request_id=req.id, outcome="failed")
        summary = platform_fees.summarize(conn)

    assert outcome.outcome == engine.APPLIED
    assert _status(req.id) == "failed"
    assert (summary.earned_cents, summary.pending_cents, summary.paid_cents) == (2550, 0, 0)


def test_webhook_for_unknown_request_is_ignored():
    with get_conn() as conn:
        outcome = engine.apply_peer_webhook(conn, request_id="nope", outcome="paid")

    assert outcome.outcome == engine.IGNORED
    assert outcome.reason == "PAYOUT_REQUEST_NOT_FOUND"
