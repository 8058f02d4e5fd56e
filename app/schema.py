# app/schema.py
from __future__ import annotations

import sqlalchemy as sa


metadata = sa.MetaData()


# ----------------------------------------------------------
# Directory (read-only collaborators: identity + scheduling)
# ----------------------------------------------------------

profiles = sa.Table(
    "profiles",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("display_name", sa.String(200)),
    sa.Column("role", sa.String(20), nullable=False, server_default="patient"),
    sa.Column("hourly_rate_cents", sa.Integer),
    sa.Column("payout_email", sa.String(320)),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)

appointments = sa.Table(
    "appointments",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("patient_id", sa.String(64), nullable=False),
    sa.Column("provider_id", sa.String(64), nullable=False),
    sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("notes", sa.Text),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
)


# ----------------------------------------------------------
# Charge side
# ----------------------------------------------------------

payments = sa.Table(
    "payments",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("appointment_id", sa.String(64), nullable=False, unique=True),
    sa.Column("payer_id", sa.String(64), nullable=False),
    sa.Column("payee_id", sa.String(64), nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("hourly_rate_cents", sa.Integer, nullable=False),
    sa.Column("duration_minutes", sa.Integer, nullable=False),
    sa.Column("gross_cents", sa.Integer, nullable=False),
    sa.Column("platform_fee_cents", sa.Integer, nullable=False),
    sa.Column("payee_earnings_cents", sa.Integer, nullable=False),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("processor_ref", sa.String(255), unique=True),
    sa.Column("processor_fee_cents", sa.Integer),
    sa.Column("processor_net_cents", sa.Integer),
    sa.Column("checkout_session_id", sa.String(255)),
    sa.Column("payout_request_id", sa.String(64)),
    sa.Column("payout_status", sa.String(20)),
    sa.Column("payout_paid_at", sa.DateTime(timezone=True)),
    sa.Column("confirmed_at", sa.DateTime(timezone=True)),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint("status IN ('pending','paid','refunded')", name="ck_payments_status"),
    sa.CheckConstraint(
        "gross_cents = platform_fee_cents + payee_earnings_cents",
        name="ck_payments_split",
    ),
)
sa.Index("ix_payments_payee_status", payments.c.payee_id, payments.c.status)


platform_fee_accruals = sa.Table(
    "platform_fee_accruals",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("payment_id", sa.String(64), nullable=False, unique=True),
    sa.Column("amount_cents", sa.Integer, nullable=False),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("payout_request_id", sa.String(64)),
    sa.Column("paid_at", sa.DateTime(timezone=True)),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint("status IN ('earned','pending','paid')", name="ck_platform_fee_status"),
)
sa.Index(
    "ix_platform_fee_accruals_status_request",
    platform_fee_accruals.c.status,
    platform_fee_accruals.c.payout_request_id,
)


# ----------------------------------------------------------
# Payout side
# ----------------------------------------------------------

payout_requests = sa.Table(
    "payout_requests",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("holder_id", sa.String(64), nullable=False),
    sa.Column("amount_cents", sa.Integer, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("destination", sa.String(320)),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("resolved_at", sa.DateTime(timezone=True)),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.CheckConstraint("amount_cents > 0", name="ck_payout_requests_amount"),
    sa.CheckConstraint(
        "status IN ('pending','paid','rejected','failed')",
        name="ck_payout_requests_status",
    ),
)
# one open request per holder
sa.Index(
    "uq_payout_requests_one_pending",
    payout_requests.c.holder_id,
    unique=True,
    postgresql_where=sa.text("status = 'pending'"),
    sqlite_where=sa.text("status = 'pending'"),
)
sa.Index("ix_payout_requests_status_created", payout_requests.c.status, payout_requests.c.created_at)


payout_payments = sa.Table(
    "payout_payments",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("request_id", sa.String(64), nullable=False),
    sa.Column("holder_id", sa.String(64), nullable=False),
    sa.Column("amount_cents", sa.Integer, nullable=False),
    sa.Column("currency", sa.String(3), nullable=False),
    sa.Column("rail", sa.String(20), nullable=False),
    sa.Column("rail_reference", sa.String(255)),
    sa.Column("status", sa.String(20), nullable=False),
    sa.Column("processed_at", sa.DateTime(timezone=True)),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("request_id", "rail", name="uq_payout_payments_request_rail"),
    sa.CheckConstraint("rail IN ('manual','peer-network')", name="ck_payout_payments_rail"),
    sa.CheckConstraint("status IN ('pending','paid','failed')", name="ck_payout_payments_status"),
)


# ----------------------------------------------------------
# Webhook audit
# ----------------------------------------------------------

webhook_events = sa.Table(
    "webhook_events",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("provider", sa.String(20), nullable=False),
    sa.Column("path", sa.String(200)),
    sa.Column("request_id", sa.String(100)),
    sa.Column("event_type", sa.String(100)),
    sa.Column("correlation_key", sa.String(255)),
    sa.Column("signature_valid", sa.Boolean, nullable=False),
    sa.Column("signature_error", sa.String(100)),
    sa.Column("body", sa.JSON),
    sa.Column("update_applied", sa.Boolean, nullable=False),
    sa.Column("ignored", sa.Boolean, nullable=False),
    sa.Column("ignore_reason", sa.String(100)),
    sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
)
sa.Index("ix_webhook_events_provider_key", webhook_events.c.provider, webhook_events.c.correlation_key)
