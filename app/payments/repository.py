# app/payments/repository.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa

from app.money import FeeSplit
from app.schema import payments, platform_fee_accruals


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _one(conn, stmt) -> dict[str, Any] | None:
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


# ==========================================================
# Inserts
# ==========================================================

def insert_payment(
    conn,
    *,
    appointment_id: str,
    payer_id: str,
    payee_id: str,
    currency: str,
    hourly_rate_cents: int,
    duration_minutes: int,
    split: FeeSplit,
) -> dict[str, Any]:
    """
    Raises sqlalchemy IntegrityError when the appointment already has a payment.
    """
    payment_id = str(uuid.uuid4())
    now = _utcnow()
    conn.execute(
        payments.insert().values(
            id=payment_id,
            appointment_id=str(appointment_id),
            payer_id=str(payer_id),
            payee_id=str(payee_id),
            currency=currency,
            hourly_rate_cents=int(hourly_rate_cents),
            duration_minutes=int(duration_minutes),
            gross_cents=split.gross_cents,
            platform_fee_cents=split.fee_cents,
            payee_earnings_cents=split.earnings_cents,
            status="pending",
            created_at=now,
            updated_at=now,
        )
    )
    row = get_payment_by_id(conn, payment_id)
    assert row, "insert_payment: row missing after insert"
    return row


# ==========================================================
# Updates
# ==========================================================

def mark_paid(
    conn,
    *,
    payment_id: str,
    processor_ref: Optional[str],
    processor_fee_cents: Optional[int] = None,
    processor_net_cents: Optional[int] = None,
) -> bool:
    """
    pending -> paid, guarded by the stored status. Returns True only for the
    caller whose UPDATE actually moved the row.
    processor_ref is write-once: an existing value is never replaced.
    """
    now = _utcnow()
    result = conn.execute(
        payments.update()
        .where(payments.c.id == payment_id)
        .where(payments.c.status == "pending")
        .values(
            status="paid",
            processor_ref=sa.func.coalesce(payments.c.processor_ref, processor_ref),
            processor_fee_cents=processor_fee_cents,
            processor_net_cents=processor_net_cents,
            confirmed_at=now,
            updated_at=now,
        )
    )
    return result.rowcount == 1


def set_checkout_session(conn, *, payment_id: str, session_id: str) -> bool:
    result = conn.execute(
        payments.update()
        .where(payments.c.id == payment_id)
        .where(payments.c.checkout_session_id.is_(None))
        .values(checkout_session_id=session_id, updated_at=_utcnow())
    )
    return result.rowcount == 1


def reserve_unlinked_for_request(conn, *, payee_id: str, request_id: str) -> int:
    """
    Sweep every paid, not-yet-linked charge of the payee into a new request.
    Charges confirmed after this statement stay available for the next one.
    """
    result = conn.execute(
        payments.update()
        .where(payments.c.payee_id == str(payee_id))
        .where(payments.c.status == "paid")
        .where(payments.c.payout_request_id.is_(None))
        .values(payout_request_id=str(request_id), payout_status="pending", updated_at=_utcnow())
    )
    return int(result.rowcount or 0)


def reserve_accrued_for_request(conn, *, request_id: str) -> int:
    """Link the charges behind the platform fee accruals swept into request_id."""
    swept = sa.select(platform_fee_accruals.c.payment_id).where(
        platform_fee_accruals.c.payout_request_id == str(request_id)
    )
    result = conn.execute(
        payments.update()
        .where(payments.c.id.in_(swept))
        .where(payments.c.payout_request_id.is_(None))
        .values(payout_request_id=str(request_id), payout_status="pending", updated_at=_utcnow())
    )
    return int(result.rowcount or 0)


def mark_paid_out_for_request(conn, *, request_id: str) -> int:
    now = _utcnow()
    result = conn.execute(
        payments.update()
        .where(payments.c.payout_request_id == str(request_id))
        .where(payments.c.payout_status == "pending")
        .values(payout_status="paid", payout_paid_at=now, updated_at=now)
    )
    return int(result.rowcount or 0)


def release_for_request(conn, *, request_id: str) -> int:
    result = conn.execute(
        payments.update()
        .where(payments.c.payout_request_id == str(request_id))
        .where(payments.c.payout_status == "pending")
        .values(payout_request_id=None, payout_status=None, updated_at=_utcnow())
    )
    return int(result.rowcount or 0)


# ==========================================================
# Reads
# ==========================================================

def get_payment_by_id(conn, payment_id: str) -> dict[str, Any] | None:
    return _one(conn, sa.select(payments).where(payments.c.id == str(payment_id)))


def get_payment_by_appointment_id(conn, appointment_id: str) -> dict[str, Any] | None:
    return _one(conn, sa.select(payments).where(payments.c.appointment_id == str(appointment_id)))


def get_payment_by_processor_ref(conn, processor_ref: str) -> dict[str, Any] | None:
    return _one(conn, sa.select(payments).where(payments.c.processor_ref == processor_ref))


def get_payment_by_any_ref(
    conn,
    *,
    appointment_id: str | None,
    processor_ref: str | None,
) -> dict[str, Any] | None:
    if appointment_id:
        row = get_payment_by_appointment_id(conn, appointment_id)
        if row:
            return row
    if processor_ref:
        return get_payment_by_processor_ref(conn, processor_ref)
    return None


def sum_for_request(conn, *, request_id: str) -> int:
    total = conn.execute(
        sa.select(sa.func.coalesce(sa.func.sum(payments.c.payee_earnings_cents), 0))
        .where(payments.c.payout_request_id == str(request_id))
    ).scalar()
    return int(total or 0)


def sum_earnings(conn, *, payee_id: str) -> dict[str, int]:
    """
    Earnings of a payee split into: charges awaiting confirmation, paid charges
    not yet linked to a payout, charges reserved by a pending payout request,
    and charges already paid out.
    """
    unlinked = sa.and_(payments.c.status == "paid", payments.c.payout_request_id.is_(None))

    def _total(cond, label):
        return sa.func.coalesce(
            sa.func.sum(sa.case((cond, payments.c.payee_earnings_cents), else_=0)), 0
        ).label(label)

    stmt = sa.select(
        _total(payments.c.status == "pending", "awaiting_charge"),
        _total(unlinked, "unlinked_paid"),
        _total(payments.c.payout_status == "pending", "reserved"),
        _total(payments.c.payout_status == "paid", "paid_out"),
    ).where(payments.c.payee_id == str(payee_id))
    row = conn.execute(stmt).mappings().first()
    return {k: int(row[k] or 0) for k in ("awaiting_charge", "unlinked_paid", "reserved", "paid_out")}
