# app/payouts/store.py
"""
Payout Request Store: withdrawal requests awaiting admin action, plus the
holder balance they are carved out of.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from app.directory import repository as directory
from app.errors import Conflict, Forbidden, NotFound
from app.payments import ledger as payments
from app.payments import repository as payments_repo
from app.payouts import repository as repo
from app.payouts.model import PayoutRequest
from app.payouts.state_machine import assert_transition
from app.platform_fees import ledger as platform_fees
from settings import settings

logger = logging.getLogger("consultpay.payouts")


@dataclass(frozen=True)
class HolderBalance:
    available_cents: int
    pending_cents: int
    paid_cents: int
    awaiting_charge_cents: int = 0


def _ensure_none_pending(conn, holder_id: str) -> None:
    if repo.get_pending_for_holder(conn, holder_id):
        raise Conflict("PAYOUT_REQUEST_ALREADY_PENDING", "A payout request is already pending")


def create(
    conn,
    *,
    holder_id: str,
    amount_cents: int,
    destination: Optional[str] = None,
    request_id: Optional[str] = None,
) -> PayoutRequest:
    _ensure_none_pending(conn, holder_id)
    if int(amount_cents) <= 0:
        raise Conflict("NOTHING_TO_PAY_OUT", "No balance available for payout")

    try:
        row = repo.insert_request(
            conn,
            holder_id=holder_id,
            amount_cents=amount_cents,
            currency=settings.CURRENCY,
            destination=destination,
            request_id=request_id,
        )
    except IntegrityError:
        raise Conflict("PAYOUT_REQUEST_ALREADY_PENDING", "A payout request is already pending")

    logger.info(
        "payout_request_created request_id=%s holder_id=%s amount_cents=%s",
        row["id"],
        holder_id,
        amount_cents,
    )
    return PayoutRequest.from_row(row)


def get(conn, request_id: str) -> PayoutRequest:
    row = repo.get_request(conn, request_id)
    if not row:
        raise NotFound("PAYOUT_REQUEST_NOT_FOUND", "Payout request not found")
    return PayoutRequest.from_row(row)


def transition(conn, request_id: str, new_status: str) -> PayoutRequest:
    """
    Move a pending request to a terminal status. Exactly one caller can win;
    everyone else gets Conflict.
    """
    current = get(conn, request_id)
    assert_transition(current.status, new_status)

    if not repo.transition_status(conn, request_id=request_id, new_status=new_status):
        raise Conflict("PAYOUT_REQUEST_NOT_PENDING", "Payout request is not pending")

    logger.info(
        "payout_request_transition request_id=%s from=%s to=%s",
        request_id,
        current.status,
        new_status,
    )
    return get(conn, request_id)


def reject(conn, request_id: str) -> PayoutRequest:
    req = transition(conn, request_id, "rejected")
    release_reservations(conn, request_id)
    return req


def release_reservations(conn, request_id: str) -> None:
    """Hand a failed or rejected request's charges and fees back to the holder."""
    released = payments_repo.release_for_request(conn, request_id=request_id)
    platform_fees.release_for_request(conn, request_id)
    logger.info("payout_reservations_released request_id=%s payments=%s", request_id, released)


def settle_reservations(conn, request_id: str) -> None:
    paid_out = payments_repo.mark_paid_out_for_request(conn, request_id=request_id)
    settled = platform_fees.settle_for_request(conn, request_id)
    logger.info(
        "payout_reservations_settled request_id=%s payments=%s settled_fees=%s",
        request_id,
        paid_out,
        settled,
    )


def pending_requests(conn, *, limit: int = 100) -> list[PayoutRequest]:
    return [PayoutRequest.from_row(r) for r in repo.list_pending(conn, limit=limit)]


def requests_for_holder(conn, holder_id: str, *, limit: int = 100) -> list[PayoutRequest]:
    return [PayoutRequest.from_row(r) for r in repo.list_for_holder(conn, holder_id, limit=limit)]


# ==========================================================
# Balances
# ==========================================================

def holder_balance(conn, holder_id: str) -> HolderBalance:
    if directory.is_platform_admin(conn, holder_id):
        fees = platform_fees.summarize(conn)
        return HolderBalance(
            available_cents=fees.earned_cents,
            pending_cents=fees.pending_cents,
            paid_cents=fees.paid_cents,
        )

    # charges reserved by an open request are already linked to it
    earnings = payments.holder_earnings(conn, holder_id)
    return HolderBalance(
        available_cents=earnings["unlinked_paid"],
        pending_cents=repo.sum_open_for_holder(conn, holder_id),
        paid_cents=repo.sum_paid_for_holder(conn, holder_id),
        awaiting_charge_cents=earnings["awaiting_charge"],
    )


def create_for_holder(conn, holder_id: str) -> PayoutRequest:
    """
    Request a payout of everything currently available to the holder, sent to
    the payout address on their profile. The paid charges are reserved in the
    same transaction, so the request amount is exactly what was reserved.
    """
    profile = directory.get_profile(conn, holder_id)
    role = directory.get_role(conn, holder_id)
    if role not in directory.PAYEE_ROLES:
        raise Forbidden("NOT_A_PAYEE", "Only providers can request payouts")

    destination = (profile or {}).get("payout_email")
    if role == directory.ADMIN_ROLE:
        return create_platform_request(conn, admin_id=holder_id, destination=destination)

    _ensure_none_pending(conn, holder_id)

    request_id = str(uuid.uuid4())
    payments_repo.reserve_unlinked_for_request(conn, payee_id=holder_id, request_id=request_id)
    amount_cents = payments_repo.sum_for_request(conn, request_id=request_id)
    if amount_cents <= 0:
        raise Conflict("NOTHING_TO_PAY_OUT", "No balance available for payout")

    return create(
        conn,
        holder_id=holder_id,
        amount_cents=amount_cents,
        destination=destination,
        request_id=request_id,
    )


def create_platform_request(conn, *, admin_id: str, destination: Optional[str] = None) -> PayoutRequest:
    """
    Sweep every earned platform fee into a single request. The accruals are
    attached first, so the request amount is exactly what was swept.
    """
    _ensure_none_pending(conn, admin_id)

    request_id = str(uuid.uuid4())
    amount_cents = platform_fees.attach_to_request(conn, request_id)
    if amount_cents <= 0:
        raise Conflict("NOTHING_TO_PAY_OUT", "No platform fees available for payout")
    payments_repo.reserve_accrued_for_request(conn, request_id=request_id)

    if destination is None:
        destination = (directory.get_profile(conn, admin_id) or {}).get("payout_email")

    return create(
        conn,
        holder_id=admin_id,
        amount_cents=amount_cents,
        destination=destination,
        request_id=request_id,
    )
