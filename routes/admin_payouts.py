# routes/admin_payouts.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app import money
from app.payouts import store
from app.platform_fees import ledger as platform_fees
from db import get_conn
from deps.admin import require_admin
from deps.auth import CurrentUser
from routes.payouts import PayoutRequestItem, PayoutRequestList, to_item
from settings import settings

logger = logging.getLogger("consultpay.admin")
router = APIRouter(prefix="/v1/admin", tags=["admin"])


class PlatformFeeSummary(BaseModel):
    earned: str
    pending: str
    paid: str
    currency: str


@router.get("/payouts/requests", response_model=PayoutRequestList)
def pending_payout_requests(
    limit: int = Query(default=100, ge=1, le=500),
    admin: CurrentUser = Depends(require_admin),
):
    with get_conn() as conn:
        reqs = store.pending_requests(conn, limit=limit)
    return PayoutRequestList(requests=[to_item(r) for r in reqs])


@router.post("/payouts/requests/{request_id}/reject", response_model=PayoutRequestItem)
def reject_payout_request(request_id: str, admin: CurrentUser = Depends(require_admin)):
    with get_conn() as conn:
        req = store.reject(conn, request_id)
    logger.info("admin_reject_payout admin_id=%s request_id=%s", admin.user_id, request_id)
    return to_item(req)


@router.get("/platform-fees", response_model=PlatformFeeSummary)
def platform_fee_summary(admin: CurrentUser = Depends(require_admin)):
    with get_conn() as conn:
        summary = platform_fees.summarize(conn)
    return PlatformFeeSummary(
        earned=money.format_amount(summary.earned_cents),
        pending=money.format_amount(summary.pending_cents),
        paid=money.format_amount(summary.paid_cents),
        currency=settings.CURRENCY,
    )


@router.post("/platform-fees/payout-request", response_model=PayoutRequestItem, status_code=201)
def platform_fee_payout_request(admin: CurrentUser = Depends(require_admin)):
    with get_conn() as conn:
        req = store.create_platform_request(conn, admin_id=admin.user_id)
    logger.info(
        "platform_fee_payout_requested admin_id=%s request_id=%s amount_cents=%s",
        admin.user_id,
        req.id,
        req.amount_cents,
    )
    return to_item(req)
