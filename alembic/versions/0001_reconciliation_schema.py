"""reconciliation schema: payments, platform fees, payout requests, webhook audit

Revision ID: 0001_reconciliation_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

from app.schema import metadata


revision = "0001_reconciliation_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # app.schema is the single definition of tables, checks and the
    # one-pending-request-per-holder partial index.
    metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    metadata.drop_all(bind=op.get_bind(), checkfirst=True)
