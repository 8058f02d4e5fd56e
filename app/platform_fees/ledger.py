# app/platform_fees/ledger.py
"""
The platform's own income, tracked as a payable balance separate from any
provider balance. Rows move earned -> pending (attached to a payout request)
-> paid, or back to earned when that request does not settle.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from app.directory.repository import is_platform_admin
from app.platform_fees import repository as repo

logger = logging.getLogger("consultpay.platform_fees")


@dataclass(frozen=True)
class FeeSummary:
    earned_cents: int
    pending_cents: int
    paid_cents: int


def accrue_for_payment(conn, payment) -> bool:
    """
    Called once per pending -> paid transition. Only the administrator's own
    consultations count as platform income; the insert ignores duplicates.
    """
    if not is_platform_admin(conn, payment.payee_id):
        return False

    created = repo.insert_accrual_if_absent(
        conn,
        payment_id=payment.id,
        amount_cents=payment.payee_earnings_cents,
    )
    if created:
        logger.info(
            "platform_fee_accrued payment_id=%s amount_cents=%s",
            payment.id,
            payment.payee_earnings_cents,
        )
    return created


def summarize(conn) -> FeeSummary:
    totals = repo.sum_by_status(conn)
    return FeeSummary(
        earned_cents=totals.get("earned", 0),
        pending_cents=totals.get("pending", 0),
        paid_cents=totals.get("paid", 0),
    )


def attach_to_request(conn, request_id: str) -> int:
    """
    Move every earned, unlinked accrual onto the request. Returns the attached
    total in cents. Must run in the same transaction that creates the request.
    """
    moved = repo.attach_earned(conn, request_id=request_id)
    total = repo.sum_for_request(conn, request_id=request_id, status="pending")
    logger.info("platform_fees_attached request_id=%s rows=%s amount_cents=%s", request_id, moved, total)
    return total


def settle_for_request(conn, request_id: str) -> int:
    n = repo.mark_paid_for_request(conn, request_id=request_id)
    if n:
        logger.info("platform_fees_settled request_id=%s rows=%s", request_id, n)
    return n


def release_for_request(conn, request_id: str) -> int:
    n = repo.release_for_request(conn, request_id=request_id)
    if n:
        logger.info("platform_fees_released request_id=%s rows=%s", request_id, n)
    return n
