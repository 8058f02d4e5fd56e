# routes/balances.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app import money
from app.payouts import store
from db import get_conn
from deps.auth import get_current_user, CurrentUser
from settings import settings

router = APIRouter(prefix="/v1/balances", tags=["balances"])


class BalanceResponse(BaseModel):
    holder_id: str
    currency: str
    available: str
    pending: str
    paid: str
    awaiting_charge: str


@router.get("/me", response_model=BalanceResponse)
def my_balance(user: CurrentUser = Depends(get_current_user)):
    with get_conn() as conn:
        balance = store.holder_balance(conn, user.user_id)
    return BalanceResponse(
        holder_id=user.user_id,
        currency=settings.CURRENCY,
        available=money.format_amount(balance.available_cents),
        pending=money.format_amount(balance.pending_cents),
        paid=money.format_amount(balance.paid_cents),
        awaiting_charge=money.format_amount(balance.awaiting_charge_cents),
    )
