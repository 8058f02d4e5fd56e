#app/webhooks/repository.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa

from app.schema import webhook_events


def insert_webhook_event(
    conn,
    *,
    provider: str,
    path: str | None = None,
    request_id: str | None = None,
    event_type: str | None = None,
    correlation_key: str | None = None,
    body: dict[str, Any] | None = None,
    signature_valid: bool = False,
    signature_error: str | None = None,
    update_applied: bool = False,
    ignored: bool = False,
    ignore_reason: str | None = None,
) -> str:
    """
    Insert a webhook event for audit/debugging.
    NOTE: caller commits.
    """
    event_id = str(uuid.uuid4())
    conn.execute(
        webhook_events.insert().values(
            id=event_id,
            provider=provider,
            path=path,
            request_id=request_id,
            event_type=event_type,
            correlation_key=correlation_key,
            signature_valid=bool(signature_valid),
            signature_error=signature_error,
            body=body,
            update_applied=bool(update_applied),
            ignored=bool(ignored),
            ignore_reason=ignore_reason,
            received_at=datetime.now(timezone.utc),
        )
    )
    return event_id


def list_webhook_events(
    conn,
    *,
    provider: str | None = None,
    correlation_key: str | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    stmt = sa.select(webhook_events)
    if provider:
        stmt = stmt.where(webhook_events.c.provider == provider)
    if correlation_key:
        stmt = stmt.where(webhook_events.c.correlation_key == correlation_key)
    stmt = stmt.order_by(webhook_events.c.received_at.desc()).limit(limit)
    return [dict(r) for r in conn.execute(stmt).mappings().all()]


def count_webhook_events(
    conn,
    *,
    provider: str,
    correlation_key: str,
    event_type: str | None = None,
    ignore_reason: str | None = None,
) -> int:
    stmt = (
        sa.select(sa.func.count())
        .select_from(webhook_events)
        .where(webhook_events.c.provider == provider)
        .where(webhook_events.c.correlation_key == correlation_key)
    )
    if event_type:
        stmt = stmt.where(webhook_events.c.event_type == event_type)
    if ignore_reason:
        stmt = stmt.where(webhook_events.c.ignore_reason == ignore_reason)
    return int(conn.execute(stmt).scalar() or 0)
