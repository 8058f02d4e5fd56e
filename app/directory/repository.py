# app/directory/repository.py
"""
Read side of the identity/scheduling collaborators. Profiles are owned
elsewhere; appointments are only inserted here on behalf of checkout.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa

from app.schema import appointments, profiles

ADMIN_ROLE = "admin"
PAYEE_ROLES = ("provider", ADMIN_ROLE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_profile(conn, profile_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        sa.select(profiles).where(profiles.c.id == str(profile_id))
    ).mappings().first()
    return dict(row) if row else None


def get_role(conn, user_id: str) -> str | None:
    role = conn.execute(
        sa.select(profiles.c.role).where(profiles.c.id == str(user_id))
    ).scalar()
    return (role or "").strip().lower() or None


def is_platform_admin(conn, user_id: str) -> bool:
    return get_role(conn, user_id) == ADMIN_ROLE


def upsert_profile(
    conn,
    *,
    profile_id: str,
    role: str,
    display_name: str | None = None,
    hourly_rate_cents: int | None = None,
    payout_email: str | None = None,
) -> None:
    """
    Seeding helper for dev/test; production profiles are written by the identity service.
    """
    existing = get_profile(conn, profile_id)
    values = {
        "display_name": display_name,
        "role": role,
        "hourly_rate_cents": hourly_rate_cents,
        "payout_email": payout_email,
    }
    if existing:
        conn.execute(profiles.update().where(profiles.c.id == profile_id).values(**values))
    else:
        conn.execute(profiles.insert().values(id=profile_id, created_at=_utcnow(), **values))


def insert_appointment(
    conn,
    *,
    patient_id: str,
    provider_id: str,
    starts_at: datetime,
    ends_at: datetime,
    notes: str | None = None,
) -> str:
    appointment_id = str(uuid.uuid4())
    conn.execute(
        appointments.insert().values(
            id=appointment_id,
            patient_id=patient_id,
            provider_id=provider_id,
            starts_at=starts_at,
            ends_at=ends_at,
            status="requested",
            notes=notes,
            created_at=_utcnow(),
        )
    )
    return appointment_id


def get_appointment_participants(conn, appointment_id: str) -> tuple[str, str] | None:
    row = conn.execute(
        sa.select(appointments.c.patient_id, appointments.c.provider_id).where(
            appointments.c.id == str(appointment_id)
        )
    ).first()
    if not row:
        return None
    return str(row[0]), str(row[1])
