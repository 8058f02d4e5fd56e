from datetime import timedelta

import pytest
import sqlalchemy as sa

from app.errors import Conflict, NotFound
from app.payouts import repository as payouts_repo
from app.payouts import store
from app.platform_fees import ledger as platform_fees
from app.schema import payments
from app.settlement import engine
from db import get_conn
from services import metrics


def _payment_row(payment_id: str) -> dict:
    with get_conn() as conn:
        return dict(conn.execute(sa.select(payments).where(payments.c.id == payment_id)).mappings().first())


def test_mark_paid_settles_request_and_links_payments(patient, provider, paid_payment):
    before = paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        req = store.create_for_holder(conn, provider.user_id)
    after = paid_payment(patient.user_id, provider.user_id)

    with get_conn() as conn:
        result = engine.mark_paid_manually(conn, req.id)
        payout = payouts_repo.get_payout_payment(conn, request_id=req.id, rail=engine.MANUAL)

    assert result.request.status == "paid"
    assert result.payout_status == "paid"
    assert payout["status"] == "paid"
    assert payout["amount_cents"] == req.amount_cents == 2550
    assert payout["processed_at"] is not None

    linked = _payment_row(before.id)
    assert linked["payout_request_id"] == req.id
    assert linked["payout_status"] == "paid"
    assert linked["payout_paid_at"] is not None

    # confirmed after the request was created: still available
    unlinked = _payment_row(after.id)
    assert unlinked["payout_request_id"] is None

    with get_conn() as conn:
        balance = store.holder_balance(conn, provider.user_id)
    assert (balance.available_cents, balance.pending_cents, balance.paid_cents) == (2550, 0, 2550)
    assert metrics.get_counter("payout_settlements_total", rail="manual", result="paid") == 1


def test_late_commit_with_earlier_confirmation_stays_available(patient, provider, paid_payment):
    paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        req = store.create_for_holder(conn, provider.user_id)

    # a confirm that started before the request but committed after it
    late = paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        conn.execute(
            payments.update()
            .where(payments.c.id == late.id)
            .values(confirmed_at=req.created_at - timedelta(seconds=5))
        )

    with get_conn() as conn:
        engine.mark_paid_manually(conn, req.id)
        balance = store.holder_balance(conn, provider.user_id)

    assert _payment_row(late.id)["payout_request_id"] is None
    assert (balance.available_cents, balance.pending_cents, balance.paid_cents) == (2550, 0, 2550)


def test_mark_paid_twice_conflicts(patient, provider, paid_payment):
    paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        req = store.create_for_holder(conn, provider.user_id)
        engine.mark_paid_manually(conn, req.id)

    with get_conn() as conn:
        with pytest.raises(Conflict):
            engine.mark_paid_manually(conn, req.id)


def test_mark_paid_rejected_request_conflicts(patient, provider, paid_payment):
    paid_payment(patient.user_id, provider.user_id)
    with get_conn() as conn:
        req = store.create_for_holder(conn, provider.user_id)
        store.reject(conn, req.id)

    with get_conn() as conn:
        with pytest.raises(Conflict):
            engine.mark_paid_manually(conn, req.id)


def test_mark_paid_unknown_request():
    with get_conn() as conn:
        with pytest.raises(NotFound):
            engine.mark_paid_manually(conn, "no-such-request")


def test_mark_paid_platform_request_settles_accruals(patient, admin, paid_payment):
    payment = paid_payment(patient.user_id, admin.user_id)
    with get_conn() as conn:
        req = store.create_platform_request(conn, admin_id=admin.user_id)

    with get_conn() as conn:
        engine.mark_paid_manually(conn, req.id)
        summary = platform_fees.summarize(conn)
    assert (summary.earned_cents, summary.pending_cents, summary.paid_cents) == (0, 0, 2550)
    row = _payment_row(payment.id)
    assert (row["payout_request_id"], row["payout_status"]) == (req.id, "paid")
