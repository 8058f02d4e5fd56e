# routes/checkout.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app import money
from app.checkout import service
from app.errors import Forbidden
from app.providers.stripe_checkout import get_card_processor
from deps.auth import get_current_user, CurrentUser

logger = logging.getLogger("consultpay.checkout")
router = APIRouter(prefix="/v1/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    provider_id: str = Field(min_length=1)
    starts_at: datetime
    ends_at: datetime
    notes: Optional[str] = Field(default=None, max_length=2000)


class CheckoutResponse(BaseModel):
    url: Optional[str]
    session_id: str
    appointment_id: str
    payment_id: str
    amount: str


class ConfirmResponse(BaseModel):
    status: str
    appointment_id: str
    payment_id: str
    already_paid: bool


@router.post("", response_model=CheckoutResponse)
def create_checkout(body: CheckoutRequest, user: CurrentUser = Depends(get_current_user)):
    if user.role != "patient":
        raise Forbidden("PATIENT_REQUIRED", "Only patients can book consultations")

    started = service.start_checkout(
        patient_id=user.user_id,
        provider_id=body.provider_id,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        notes=body.notes,
        processor=get_card_processor(),
    )
    return CheckoutResponse(
        url=started.url,
        session_id=started.session_id,
        appointment_id=started.appointment_id,
        payment_id=started.payment_id,
        amount=money.format_amount(started.amount_cents),
    )


@router.get("/confirm", response_model=ConfirmResponse)
def confirm_checkout(session_id: str = Query(default="")):
    result = service.confirm_from_poll(session_id, processor=get_card_processor())
    return ConfirmResponse(
        status=result.payment.status,
        appointment_id=result.payment.appointment_id,
        payment_id=result.payment.id,
        already_paid=not result.changed,
    )
