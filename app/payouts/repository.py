# app/payouts/repository.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa

from app.schema import payout_payments, payout_requests
from db import dialect_insert


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _one(conn, stmt) -> dict[str, Any] | None:
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


# ==========================================================
# Payout requests
# ==========================================================

def insert_request(
    conn,
    *,
    holder_id: str,
    amount_cents: int,
    currency: str,
    destination: Optional[str],
    request_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Raises sqlalchemy IntegrityError when the holder already has a pending request.
    """
    rid = request_id or str(uuid.uuid4())
    now = _utcnow()
    conn.execute(
        payout_requests.insert().values(
            id=rid,
            holder_id=str(holder_id),
            amount_cents=int(amount_cents),
            currency=currency,
            destination=destination,
            status="pending",
            created_at=now,
            updated_at=now,
        )
    )
    row = get_request(conn, rid)
    assert row, "insert_request: row missing after insert"
    return row


def get_request(conn, request_id: str) -> dict[str, Any] | None:
    return _one(conn, sa.select(payout_requests).where(payout_requests.c.id == str(request_id)))


def get_pending_for_holder(conn, holder_id: str) -> dict[str, Any] | None:
    return _one(
        conn,
        sa.select(payout_requests)
        .where(payout_requests.c.holder_id == str(holder_id))
        .where(payout_requests.c.status == "pending"),
    )


def list_pending(conn, *, limit: int = 100) -> list[dict[str, Any]]:
    rows = conn.execute(
        sa.select(payout_requests)
        .where(payout_requests.c.status == "pending")
        .order_by(payout_requests.c.created_at.desc())
        .limit(limit)
    ).mappings().all()
    return [dict(r) for r in rows]


def list_for_holder(conn, holder_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
    rows = conn.execute(
        sa.select(payout_requests)
        .where(payout_requests.c.holder_id == str(holder_id))
        .order_by(payout_requests.c.created_at.desc())
        .limit(limit)
    ).mappings().all()
    return [dict(r) for r in rows]


def transition_status(conn, *, request_id: str, new_status: str) -> bool:
    """
    pending -> new_status, guarded by the stored status.
    Returns True only when this call moved the row.
    """
    now = _utcnow()
    result = conn.execute(
        payout_requests.update()
        .where(payout_requests.c.id == str(request_id))
        .where(payout_requests.c.status == "pending")
        .values(status=new_status, resolved_at=now, updated_at=now)
    )
    return result.rowcount == 1


def sum_open_for_holder(conn, holder_id: str) -> int:
    total = conn.execute(
        sa.select(sa.func.coalesce(sa.func.sum(payout_requests.c.amount_cents), 0))
        .where(payout_requests.c.holder_id == str(holder_id))
        .where(payout_requests.c.status == "pending")
    ).scalar()
    return int(total or 0)


def sum_paid_for_holder(conn, holder_id: str) -> int:
    """
    Settled requests, counted once each whichever rail(s) reported them.
    """
    total = conn.execute(
        sa.select(sa.func.coalesce(sa.func.sum(payout_requests.c.amount_cents), 0))
        .where(payout_requests.c.holder_id == str(holder_id))
        .where(payout_requests.c.status == "paid")
    ).scalar()
    return int(total or 0)


# ==========================================================
# Payout payments (one per request and rail)
# ==========================================================

def get_payout_payment(conn, *, request_id: str, rail: str) -> dict[str, Any] | None:
    return _one(
        conn,
        sa.select(payout_payments)
        .where(payout_payments.c.request_id == str(request_id))
        .where(payout_payments.c.rail == rail),
    )


def insert_payout_payment_if_absent(
    conn,
    *,
    request_id: str,
    holder_id: str,
    amount_cents: int,
    currency: str,
    rail: str,
    status: str,
    rail_reference: Optional[str] = None,
) -> bool:
    """
    Optimistic record. A row already written for (request, rail), e.g. by a
    webhook that beat the submission response, is left untouched.
    """
    now = _utcnow()
    stmt = (
        dialect_insert(conn, payout_payments)
        .values(
            id=str(uuid.uuid4()),
            request_id=str(request_id),
            holder_id=str(holder_id),
            amount_cents=int(amount_cents),
            currency=currency,
            rail=rail,
            rail_reference=rail_reference,
            status=status,
            processed_at=now if status == "paid" else None,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["request_id", "rail"])
    )
    result = conn.execute(stmt)
    return result.rowcount == 1


def upsert_payout_payment(
    conn,
    *,
    request_id: str,
    holder_id: str,
    amount_cents: int,
    currency: str,
    rail: str,
    status: str,
    rail_reference: Optional[str] = None,
) -> None:
    """
    Record the rail's latest report for (request, rail). rail_reference is only
    replaced when a new one is supplied.
    """
    now = _utcnow()
    stmt = dialect_insert(conn, payout_payments).values(
        id=str(uuid.uuid4()),
        request_id=str(request_id),
        holder_id=str(holder_id),
        amount_cents=int(amount_cents),
        currency=currency,
        rail=rail,
        rail_reference=rail_reference,
        status=status,
        processed_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["request_id", "rail"],
        set_={
            "status": stmt.excluded.status,
            "rail_reference": sa.func.coalesce(stmt.excluded.rail_reference, payout_payments.c.rail_reference),
            "processed_at": stmt.excluded.processed_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    conn.execute(stmt)
