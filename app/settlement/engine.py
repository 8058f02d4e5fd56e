# app/settlement/engine.py
"""
Settlement Engine: moves a pending payout request to a terminal state over
one of two rails.

manual        admin confirms an out-of-band transfer; synchronous.
peer-network  PayPal payout submitted now, settled later by webhook.

Every request transition goes through the conditional pending -> X update in
app.payouts.repository, so whichever path arrives first wins and the other
sees a conflict (or a no-op when it reports the same outcome).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from app.errors import Conflict, ValidationError
from app.payouts import repository as payouts_repo
from app.payouts import store
from app.payouts.model import PayoutRequest
from app.providers.paypal import PayPalClient, PayoutSubmission, get_paypal_client
from db import get_conn
from services.metrics import increment_payout_settlement

logger = logging.getLogger("consultpay.settlement")

MANUAL = "manual"
PEER_NETWORK = "peer-network"

# webhook outcomes
APPLIED = "applied"
ALREADY_APPLIED = "already_applied"
IGNORED = "ignored"
CONFLICT = "conflict"


@dataclass(frozen=True)
class SettlementResult:
    request: PayoutRequest
    payout_status: str


@dataclass(frozen=True)
class WebhookOutcome:
    outcome: str
    reason: Optional[str] = None
    request_status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome == APPLIED


def _apply_paid_side_effects(conn, req: PayoutRequest) -> None:
    store.settle_reservations(conn, req.id)


def _apply_failed_side_effects(conn, req: PayoutRequest) -> None:
    store.release_reservations(conn, req.id)


# ==========================================================
# Manual rail
# ==========================================================

def mark_paid_manually(conn, request_id: str) -> SettlementResult:
    req = store.get(conn, request_id)
    if req.status != "pending":
        raise Conflict("PAYOUT_REQUEST_NOT_PENDING", "Payout request is not pending")

    paid = store.transition(conn, request_id, "paid")
    payouts_repo.upsert_payout_payment(
        conn,
        request_id=req.id,
        holder_id=req.holder_id,
        amount_cents=req.amount_cents,
        currency=req.currency,
        rail=MANUAL,
        status="paid",
    )
    _apply_paid_side_effects(conn, req)

    increment_payout_settlement(rail=MANUAL, result="paid")
    logger.info("payout_marked_paid request_id=%s holder_id=%s amount_cents=%s", req.id, req.holder_id, req.amount_cents)
    return SettlementResult(request=paid, payout_status="paid")


# ==========================================================
# Peer-network rail
# ==========================================================

def send_via_peer_network(request_id: str, *, client: PayPalClient | None = None) -> SettlementResult:
    """
    Read (own transaction) -> submit (no transaction) -> record (own transaction).
    A failed or timed-out submission raises UpstreamFailure before anything is
    written, so the request stays pending and can be retried.
    """
    with get_conn() as conn:
        req = store.get(conn, request_id)
        if req.status != "pending":
            raise Conflict("PAYOUT_REQUEST_NOT_PENDING", "Payout request is not pending")
        if not (req.destination or "").strip():
            raise ValidationError("DESTINATION_MISSING", "Payout destination is missing for this request")
        if payouts_repo.get_payout_payment(conn, request_id=req.id, rail=PEER_NETWORK):
            raise Conflict("PAYOUT_ALREADY_SUBMITTED", "Payout was already submitted to the network")

    client = client or get_paypal_client()
    try:
        submission = client.submit_payout(
            request_id=req.id,
            amount_cents=req.amount_cents,
            currency=req.currency,
            receiver=req.destination.strip(),
        )
    except Exception:
        increment_payout_settlement(rail=PEER_NETWORK, result="submit_failed")
        raise

    with get_conn() as conn:
        return record_peer_submission(conn, req, submission)


def record_peer_submission(conn, req: PayoutRequest, submission: PayoutSubmission) -> SettlementResult:
    status = "paid" if submission.succeeded else "pending"

    current = store.get(conn, req.id)
    existing = payouts_repo.get_payout_payment(conn, request_id=req.id, rail=PEER_NETWORK)
    if current.status != "pending" and not existing:
        # settled by another path while the batch was in flight
        increment_payout_settlement(rail=PEER_NETWORK, result="late_submission")
        logger.error(
            "peer_submission_after_terminal request_id=%s request_status=%s batch_id=%s batch_status=%s",
            req.id,
            current.status,
            submission.batch_id,
            submission.batch_status,
        )
        return SettlementResult(request=current, payout_status=status)

    inserted = payouts_repo.insert_payout_payment_if_absent(
        conn,
        request_id=req.id,
        holder_id=req.holder_id,
        amount_cents=req.amount_cents,
        currency=req.currency,
        rail=PEER_NETWORK,
        status=status,
        rail_reference=submission.batch_id,
    )
    if not inserted:
        logger.info("peer_payout_row_exists request_id=%s", req.id)

    if submission.succeeded and payouts_repo.transition_status(conn, request_id=req.id, new_status="paid"):
        _apply_paid_side_effects(conn, req)

    increment_payout_settlement(rail=PEER_NETWORK, result=status)
    return SettlementResult(request=store.get(conn, req.id), payout_status=status)


def apply_peer_webhook(
    conn,
    *,
    request_id: str,
    outcome: str,
    rail_reference: Optional[str] = None,
) -> WebhookOutcome:
    """
    Converge on the network's final report for a request.

    outcome is "paid" or "failed". Redelivery of an applied report is a no-op.
    A report contradicting a terminal state reached by another path changes
    neither the request nor its PayoutPayment rows; it is only logged and
    audited by the caller.
    """
    if outcome not in ("paid", "failed"):
        raise ValueError(f"unsupported payout outcome: {outcome}")

    row = payouts_repo.get_request(conn, request_id)
    if not row:
        logger.warning("peer_webhook_unknown_request request_id=%s", request_id)
        return WebhookOutcome(outcome=IGNORED, reason="PAYOUT_REQUEST_NOT_FOUND")

    req = PayoutRequest.from_row(row)

    if req.status == "pending":
        if payouts_repo.transition_status(conn, request_id=req.id, new_status=outcome):
            payouts_repo.upsert_payout_payment(
                conn,
                request_id=req.id,
                holder_id=req.holder_id,
                amount_cents=req.amount_cents,
                currency=req.currency,
                rail=PEER_NETWORK,
                status=outcome,
                rail_reference=rail_reference,
            )
            if outcome == "paid":
                _apply_paid_side_effects(conn, req)
            else:
                _apply_failed_side_effects(conn, req)
            increment_payout_settlement(rail=PEER_NETWORK, result=outcome)
            logger.info("peer_webhook_applied request_id=%s outcome=%s", req.id, outcome)
            return WebhookOutcome(outcome=APPLIED, request_status=outcome)

        # lost the race to another path; judge against what it wrote
        req = store.get(conn, req.id)

    existing = payouts_repo.get_payout_payment(conn, request_id=req.id, rail=PEER_NETWORK)
    if req.status == outcome and existing and existing["status"] == outcome:
        return WebhookOutcome(outcome=ALREADY_APPLIED, reason="ALREADY_APPLIED", request_status=req.status)

    increment_payout_settlement(rail=PEER_NETWORK, result="conflict")
    logger.error(
        "peer_webhook_conflict request_id=%s request_status=%s reported=%s rail_reference=%s",
        req.id,
        req.status,
        outcome,
        rail_reference,
    )
    return WebhookOutcome(outcome=CONFLICT, reason="PAYOUT_REQUEST_NOT_PENDING", request_status=req.status)
