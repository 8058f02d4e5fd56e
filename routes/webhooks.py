# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.checkout import service as checkout
from app.errors import ValidationError
from app.providers.paypal import get_paypal_client
from app.providers.stripe_checkout import get_card_processor
from app.settlement import engine
from app.webhooks.repository import count_webhook_events, insert_webhook_event
from db import get_conn
from services.metrics import increment_webhook_event
from services.redaction import redact_dict, redact_text


router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("consultpay.webhooks")


PAYPAL_SUCCESS_EVENTS = frozenset(
    {
        "PAYMENT.PAYOUTS-ITEM.SUCCEEDED",
        "PAYMENT.PAYOUTS-ITEM.COMPLETED",
        "PAYOUTS-ITEM.SUCCEEDED",
    }
)

PAYPAL_FAILURE_EVENTS = frozenset(
    {
        "PAYMENT.PAYOUTS-ITEM.FAILED",
        "PAYMENT.PAYOUTS-ITEM.DENIED",
        "PAYMENT.PAYOUTS-ITEM.RETURNED",
        "PAYOUTS-ITEM.FAILED",
        "PAYOUTS-ITEM.DENIED",
        "PAYOUTS-ITEM.RETURNED",
    }
)


def _parse_json(raw: bytes) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw or b"null")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _paypal_outcome(event_type: str) -> str | None:
    if event_type in PAYPAL_SUCCESS_EVENTS:
        return "paid"
    if event_type in PAYPAL_FAILURE_EVENTS:
        return "failed"
    return None


def _sender_item_id(event: dict[str, Any]) -> str | None:
    resource = event.get("resource") or {}
    payout_item = resource.get("payout_item") or {}
    value = payout_item.get("sender_item_id") or resource.get("sender_item_id")
    if not value:
        return None
    return str(value).strip() or None


def _record_event(
    conn,
    *,
    provider: str,
    req: Request,
    event: dict[str, Any] | None,
    signature_valid: bool,
    signature_error: str | None = None,
    correlation_key: str | None = None,
    update_applied: bool = False,
    ignored: bool = False,
    ignore_reason: str | None = None,
) -> None:
    request_id = getattr(req.state, "request_id", None)
    event_type = (event or {}).get("event_type") or (event or {}).get("type")

    insert_webhook_event(
        conn,
        provider=provider,
        path=str(req.url.path),
        request_id=request_id,
        event_type=event_type,
        correlation_key=correlation_key,
        body=redact_dict(event) if event is not None else None,
        signature_valid=signature_valid,
        signature_error=signature_error,
        update_applied=update_applied,
        ignored=ignored,
        ignore_reason=ignore_reason,
    )
    increment_webhook_event(provider=provider, signature_valid=signature_valid, applied=update_applied)

    logger.info(
        "webhook_received request_id=%s provider=%s event_type=%s signature_valid=%s correlation_key=%s applied=%s reason=%s",
        request_id,
        provider,
        event_type,
        signature_valid,
        redact_text(correlation_key or ""),
        update_applied,
        ignore_reason or signature_error,
    )


def _record_event_standalone(**kwargs) -> None:
    with get_conn() as conn:
        _record_event(conn, **kwargs)


# ==========================================================
# Card processor (Stripe)
# ==========================================================

@router.post("/stripe")
async def stripe_webhook(req: Request):
    raw = await req.body()
    processor = get_card_processor()

    try:
        event = processor.construct_event(raw, req.headers.get("Stripe-Signature"))
    except ValidationError as e:
        _record_event_standalone(
            provider="stripe",
            req=req,
            event=_parse_json(raw),
            signature_valid=False,
            signature_error=e.code,
            ignored=True,
            ignore_reason=e.code,
        )
        raise

    try:
        outcome, appointment_id, reason = await run_in_threadpool(
            checkout.confirm_from_webhook, event, processor=processor
        )
    except ValidationError as e:
        _record_event_standalone(
            provider="stripe",
            req=req,
            event=event,
            signature_valid=True,
            ignored=True,
            ignore_reason=e.code,
        )
        raise

    _record_event_standalone(
        provider="stripe",
        req=req,
        event=event,
        signature_valid=True,
        correlation_key=appointment_id,
        update_applied=outcome == "applied",
        ignored=outcome == "ignored",
        ignore_reason=reason,
    )
    return {"received": True}


# ==========================================================
# Peer payout network (PayPal)
# ==========================================================

@router.post("/paypal")
async def paypal_webhook(req: Request):
    raw = await req.body()
    event = _parse_json(raw)
    if event is None:
        _record_event_standalone(
            provider="paypal",
            req=req,
            event=None,
            signature_valid=False,
            signature_error="INVALID_PAYLOAD",
            ignored=True,
            ignore_reason="INVALID_PAYLOAD",
        )
        raise ValidationError("INVALID_PAYLOAD", "Webhook payload is not valid JSON")

    try:
        await run_in_threadpool(get_paypal_client().verify_webhook_signature, req.headers, event)
    except ValidationError as e:
        _record_event_standalone(
            provider="paypal",
            req=req,
            event=event,
            signature_valid=False,
            signature_error=e.code,
            ignored=True,
            ignore_reason=e.code,
        )
        raise

    event_type = str(event.get("event_type") or "")
    outcome = _paypal_outcome(event_type)
    if outcome is None:
        _record_event_standalone(
            provider="paypal",
            req=req,
            event=event,
            signature_valid=True,
            ignored=True,
            ignore_reason="UNHANDLED_EVENT_TYPE",
        )
        return {"received": True}

    request_id = _sender_item_id(event)
    if not request_id:
        _record_event_standalone(
            provider="paypal",
            req=req,
            event=event,
            signature_valid=True,
            ignored=True,
            ignore_reason="MISSING_SENDER_ITEM_ID",
        )
        raise ValidationError("MISSING_SENDER_ITEM_ID", "Missing sender item id")

    rail_reference = (event.get("resource") or {}).get("payout_item_id")

    with get_conn() as conn:
        result = engine.apply_peer_webhook(
            conn,
            request_id=request_id,
            outcome=outcome,
            rail_reference=str(rail_reference) if rail_reference else None,
        )
        # a contradiction is answered with 409 once; redeliveries are acknowledged
        already_reported = result.outcome == engine.CONFLICT and count_webhook_events(
            conn,
            provider="paypal",
            correlation_key=request_id,
            event_type=event_type,
            ignore_reason=result.reason,
        ) > 0
        _record_event(
            conn,
            provider="paypal",
            req=req,
            event=event,
            signature_valid=True,
            correlation_key=request_id,
            update_applied=result.applied,
            ignored=not result.applied,
            ignore_reason=result.reason,
        )

    if result.outcome == engine.CONFLICT and not already_reported:
        return JSONResponse(
            status_code=409,
            content={
                "detail": {
                    "error": "PAYOUT_REQUEST_NOT_PENDING",
                    "message": f"Payout request is already {result.request_status}",
                }
            },
        )

    return {"received": True, "status": result.request_status}
