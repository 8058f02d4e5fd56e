# app/payments/ledger.py
"""
Payment Ledger: one Payment per appointment, confirmed at most once.

Both confirmation paths (the client poll right after checkout and the card
processor webhook) call confirm_paid(). There is no lock: the conditional
pending -> paid UPDATE decides which caller performs the transition, every
other caller sees "already_paid".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError

from app import money
from app.errors import Conflict, ValidationError
from app.payments import repository as repo
from app.payments.model import FeeBreakdown, Payment
from app.platform_fees import ledger as platform_fees
from services.metrics import increment_charge_confirmation
from settings import settings

logger = logging.getLogger("consultpay.payments")

CONFIRMED = "confirmed"
ALREADY_PAID = "already_paid"
NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ConfirmResult:
    outcome: str
    payment: Optional[Payment] = None

    @property
    def changed(self) -> bool:
        return self.outcome == CONFIRMED


def open_payment(
    conn,
    *,
    appointment_id: str,
    payer_id: str,
    payee_id: str,
    hourly_rate: money.Amount,
    duration_minutes: int,
) -> Payment:
    if not appointment_id or not payer_id or not payee_id:
        raise ValidationError("MISSING_PARTICIPANTS", "appointment, payer and payee are required")

    split = money.split(hourly_rate, duration_minutes)
    if split.gross_cents <= 0:
        raise ValidationError("INVALID_PRICE", "Unable to compute appointment price")

    if repo.get_payment_by_appointment_id(conn, appointment_id):
        raise Conflict("PAYMENT_EXISTS", "A payment already exists for this appointment")

    try:
        row = repo.insert_payment(
            conn,
            appointment_id=appointment_id,
            payer_id=payer_id,
            payee_id=payee_id,
            currency=settings.CURRENCY,
            hourly_rate_cents=money.to_cents(hourly_rate),
            duration_minutes=duration_minutes,
            split=split,
        )
    except IntegrityError:
        # lost a race with another checkout for the same appointment
        raise Conflict("PAYMENT_EXISTS", "A payment already exists for this appointment")

    logger.info(
        "payment_opened payment_id=%s appointment_id=%s gross_cents=%s fee_cents=%s earnings_cents=%s",
        row["id"],
        appointment_id,
        split.gross_cents,
        split.fee_cents,
        split.earnings_cents,
    )
    return Payment.from_row(row)


def confirm_paid(
    conn,
    *,
    appointment_id: str | None = None,
    processor_ref: str | None = None,
    fee_breakdown: FeeBreakdown | None = None,
    source: str = "unknown",
) -> ConfirmResult:
    """
    Apply a "charge succeeded" event. Safe to call any number of times, from any
    path, in any order.
    """
    if not appointment_id and not processor_ref:
        raise ValidationError("MISSING_IDENTIFIER", "appointment_id or processor_ref is required")

    row = repo.get_payment_by_any_ref(conn, appointment_id=appointment_id, processor_ref=processor_ref)
    if not row:
        # Not an error for the caller, but a payment we expected may be missing.
        logger.warning(
            "confirm_paid_nothing_to_reconcile source=%s appointment_id=%s processor_ref=%s",
            source,
            appointment_id,
            processor_ref,
        )
        increment_charge_confirmation(source=source, outcome=NOT_FOUND)
        return ConfirmResult(outcome=NOT_FOUND)

    if row["status"] == "paid":
        increment_charge_confirmation(source=source, outcome=ALREADY_PAID)
        return ConfirmResult(outcome=ALREADY_PAID, payment=Payment.from_row(row))

    if row["status"] != "pending":
        raise Conflict("PAYMENT_NOT_PENDING", f"Payment is {row['status']}")

    breakdown = fee_breakdown or FeeBreakdown()
    try:
        changed = repo.mark_paid(
            conn,
            payment_id=row["id"],
            processor_ref=processor_ref,
            processor_fee_cents=breakdown.fee_cents,
            processor_net_cents=breakdown.net_cents,
        )
    except IntegrityError:
        raise Conflict("PROCESSOR_REF_IN_USE", "Processor reference already belongs to another payment")

    refreshed = repo.get_payment_by_id(conn, row["id"])
    payment = Payment.from_row(refreshed)

    if not changed:
        if payment.status == "paid":
            increment_charge_confirmation(source=source, outcome=ALREADY_PAID)
            return ConfirmResult(outcome=ALREADY_PAID, payment=payment)
        raise Conflict("PAYMENT_NOT_PENDING", f"Payment is {payment.status}")

    platform_fees.accrue_for_payment(conn, payment)

    logger.info(
        "payment_confirmed payment_id=%s appointment_id=%s processor_ref=%s source=%s",
        payment.id,
        payment.appointment_id,
        payment.processor_ref,
        source,
    )
    increment_charge_confirmation(source=source, outcome=CONFIRMED)
    return ConfirmResult(outcome=CONFIRMED, payment=payment)


def holder_earnings(conn, holder_id: str) -> dict[str, int]:
    return repo.sum_earnings(conn, payee_id=holder_id)
