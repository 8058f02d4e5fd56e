# routes/payouts.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app import money
from app.payouts import store
from app.payouts.model import PayoutRequest
from app.settlement import engine
from db import get_conn
from deps.admin import require_admin
from deps.auth import get_current_user, CurrentUser
from services.redaction import redact_text

logger = logging.getLogger("consultpay.payouts")
router = APIRouter(prefix="/v1/payouts", tags=["payouts"])


class PayoutRequestItem(BaseModel):
    id: str
    holder_id: str
    amount: str
    currency: str
    destination: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class PayoutRequestList(BaseModel):
    requests: List[PayoutRequestItem]


class SettleBody(BaseModel):
    # accepts {"requestId": ...} as well as {"request_id": ...}
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId", min_length=1)


class SettleResponse(BaseModel):
    request_id: str
    status: str
    payout_status: str


def to_item(req: PayoutRequest) -> PayoutRequestItem:
    return PayoutRequestItem(
        id=req.id,
        holder_id=req.holder_id,
        amount=money.format_amount(req.amount_cents),
        currency=req.currency,
        destination=req.destination,
        status=req.status,
        created_at=req.created_at,
        resolved_at=req.resolved_at,
    )


@router.post("/requests", response_model=PayoutRequestItem, status_code=201)
def request_payout(user: CurrentUser = Depends(get_current_user)):
    with get_conn() as conn:
        req = store.create_for_holder(conn, user.user_id)
    logger.info(
        "payout_requested request_id=%s holder_id=%s amount_cents=%s destination=%s",
        req.id,
        req.holder_id,
        req.amount_cents,
        redact_text(req.destination or ""),
    )
    return to_item(req)


@router.get("/requests/me", response_model=PayoutRequestList)
def my_payout_requests(user: CurrentUser = Depends(get_current_user)):
    with get_conn() as conn:
        reqs = store.requests_for_holder(conn, user.user_id)
    return PayoutRequestList(requests=[to_item(r) for r in reqs])


@router.post("/mark-paid", response_model=SettleResponse)
def mark_paid(body: SettleBody, admin: CurrentUser = Depends(require_admin)):
    with get_conn() as conn:
        result = engine.mark_paid_manually(conn, body.request_id.strip())
    logger.info("admin_mark_paid admin_id=%s request_id=%s", admin.user_id, body.request_id)
    return SettleResponse(
        request_id=result.request.id,
        status=result.request.status,
        payout_status=result.payout_status,
    )


@router.post("/peer-network", response_model=SettleResponse)
def send_peer_network(body: SettleBody, admin: CurrentUser = Depends(require_admin)):
    # opens its own short transactions around the network call
    result = engine.send_via_peer_network(body.request_id.strip())
    logger.info(
        "admin_peer_payout admin_id=%s request_id=%s payout_status=%s",
        admin.user_id,
        body.request_id,
        result.payout_status,
    )
    return SettleResponse(
        request_id=result.request.id,
        status=result.request.status,
        payout_status=result.payout_status,
    )
