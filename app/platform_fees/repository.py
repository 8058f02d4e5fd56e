# app/platform_fees/repository.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa

from app.schema import platform_fee_accruals
from db import dialect_insert


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def insert_accrual_if_absent(conn, *, payment_id: str, amount_cents: int) -> bool:
    """
    One accrual per payment. Returns True when this call created the row.
    """
    stmt = (
        dialect_insert(conn, platform_fee_accruals)
        .values(
            id=str(uuid.uuid4()),
            payment_id=str(payment_id),
            amount_cents=int(amount_cents),
            status="earned",
            created_at=_utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["payment_id"])
    )
    result = conn.execute(stmt)
    return result.rowcount == 1


def get_accrual_by_payment_id(conn, payment_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        sa.select(platform_fee_accruals).where(platform_fee_accruals.c.payment_id == str(payment_id))
    ).mappings().first()
    return dict(row) if row else None


def list_for_request(conn, request_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        sa.select(platform_fee_accruals)
        .where(platform_fee_accruals.c.payout_request_id == str(request_id))
        .order_by(platform_fee_accruals.c.created_at)
    ).mappings().all()
    return [dict(r) for r in rows]


def attach_earned(conn, *, request_id: str) -> int:
    result = conn.execute(
        platform_fee_accruals.update()
        .where(platform_fee_accruals.c.status == "earned")
        .where(platform_fee_accruals.c.payout_request_id.is_(None))
        .values(status="pending", payout_request_id=str(request_id))
    )
    return int(result.rowcount or 0)


def sum_for_request(conn, *, request_id: str, status: str) -> int:
    total = conn.execute(
        sa.select(sa.func.coalesce(sa.func.sum(platform_fee_accruals.c.amount_cents), 0))
        .where(platform_fee_accruals.c.payout_request_id == str(request_id))
        .where(platform_fee_accruals.c.status == status)
    ).scalar()
    return int(total or 0)


def mark_paid_for_request(conn, *, request_id: str) -> int:
    result = conn.execute(
        platform_fee_accruals.update()
        .where(platform_fee_accruals.c.payout_request_id == str(request_id))
        .where(platform_fee_accruals.c.status == "pending")
        .values(status="paid", paid_at=_utcnow())
    )
    return int(result.rowcount or 0)


def release_for_request(conn, *, request_id: str) -> int:
    result = conn.execute(
        platform_fee_accruals.update()
        .where(platform_fee_accruals.c.payout_request_id == str(request_id))
        .where(platform_fee_accruals.c.status == "pending")
        .values(status="earned", payout_request_id=None)
    )
    return int(result.rowcount or 0)


def sum_by_status(conn) -> dict[str, int]:
    rows = conn.execute(
        sa.select(
            platform_fee_accruals.c.status,
            sa.func.coalesce(sa.func.sum(platform_fee_accruals.c.amount_cents), 0),
        ).group_by(platform_fee_accruals.c.status)
    ).all()
    totals = {"earned": 0, "pending": 0, "paid": 0}
    for status, total in rows:
        totals[str(status)] = int(total or 0)
    return totals
