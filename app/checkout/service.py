# app/checkout/service.py
"""
Charge side orchestration: start a hosted checkout for an appointment and
turn the processor's "paid" signals (client poll, webhook) into
Payment Ledger confirmations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app import money
from app.directory import repository as directory
from app.errors import NotFound, ValidationError
from app.payments import ledger
from app.payments import repository as payments_repo
from app.providers.stripe_checkout import StripeCheckout
from db import get_conn
from settings import settings

logger = logging.getLogger("consultpay.checkout")

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutStarted:
    appointment_id: str
    payment_id: str
    session_id: str
    url: Optional[str]
    amount_cents: int


@dataclass(frozen=True)
class SessionFacts:
    appointment_id: str
    patient_id: Optional[str]
    provider_id: Optional[str]
    payment_intent_id: Optional[str]


def _duration_minutes(starts_at: datetime, ends_at: datetime) -> int:
    if ends_at <= starts_at:
        raise ValidationError("INVALID_WINDOW", "ends_at must be after starts_at")
    return int(round((ends_at - starts_at).total_seconds() / 60))


def start_checkout(
    *,
    patient_id: str,
    provider_id: str,
    starts_at: datetime,
    ends_at: datetime,
    notes: str | None,
    processor: StripeCheckout,
    customer_email: str | None = None,
) -> CheckoutStarted:
    """
    The appointment and its pending Payment are committed before the processor
    is called, so a session can never exist without the Payment it settles.
    """
    minutes = _duration_minutes(starts_at, ends_at)

    with get_conn() as conn:
        payee_role = directory.get_role(conn, provider_id)
        if payee_role not in directory.PAYEE_ROLES:
            raise NotFound("PROVIDER_NOT_FOUND", "Provider not found")
        profile = directory.get_profile(conn, provider_id) or {}
        rate_cents = profile.get("hourly_rate_cents")
        if not rate_cents or int(rate_cents) <= 0:
            raise ValidationError("INVALID_RATE", "Provider has no hourly rate set")

        hourly_rate = money.from_cents(int(rate_cents))
        appointment_id = directory.insert_appointment(
            conn,
            patient_id=patient_id,
            provider_id=provider_id,
            starts_at=starts_at,
            ends_at=ends_at,
            notes=notes,
        )
        payment = ledger.open_payment(
            conn,
            appointment_id=appointment_id,
            payer_id=patient_id,
            payee_id=provider_id,
            hourly_rate=hourly_rate,
            duration_minutes=minutes,
        )

    metadata = {
        "appointment_id": appointment_id,
        "payment_id": payment.id,
        "patient_id": str(patient_id),
        "provider_id": str(provider_id),
        "starts_at": starts_at.isoformat(),
        "ends_at": ends_at.isoformat(),
        "duration_minutes": str(minutes),
        "hourly_rate": f"{hourly_rate:.2f}",
    }
    session = processor.create_session(
        amount_cents=payment.gross_cents,
        currency=payment.currency,
        product_name=settings.CHECKOUT_PRODUCT_NAME,
        metadata=metadata,
        customer_email=customer_email,
    )

    with get_conn() as conn:
        payments_repo.set_checkout_session(conn, payment_id=payment.id, session_id=session.id)

    logger.info(
        "checkout_started appointment_id=%s payment_id=%s session_id=%s amount_cents=%s",
        appointment_id,
        payment.id,
        session.id,
        payment.gross_cents,
    )
    return CheckoutStarted(
        appointment_id=appointment_id,
        payment_id=payment.id,
        session_id=session.id,
        url=session.url,
        amount_cents=payment.gross_cents,
    )


# ==========================================================
# Session validation (shared by poll + webhook)
# ==========================================================

def _positive(value: Any) -> bool:
    try:
        return Decimal(str(value)) > 0
    except (InvalidOperation, ValueError):
        return False


def _check_currency(session: dict[str, Any]) -> None:
    currency = str(session.get("currency") or "").upper()
    if currency != settings.CURRENCY.upper():
        raise ValidationError("UNSUPPORTED_CURRENCY", "Unsupported currency in checkout session")


def _payment_intent_id(session: dict[str, Any]) -> Optional[str]:
    intent = session.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    return str(intent) if intent else None


def session_facts_for_poll(session: dict[str, Any]) -> SessionFacts:
    if session.get("payment_status") != "paid":
        raise ValidationError("PAYMENT_NOT_PAID", "Payment is not marked as paid")
    _check_currency(session)
    metadata = session.get("metadata") or {}
    appointment_id = metadata.get("appointment_id")
    if not appointment_id:
        raise ValidationError("INVALID_METADATA", "Missing appointment_id in session metadata")
    return SessionFacts(
        appointment_id=str(appointment_id),
        patient_id=metadata.get("patient_id"),
        provider_id=metadata.get("provider_id"),
        payment_intent_id=_payment_intent_id(session),
    )


def session_facts_for_webhook(session: dict[str, Any]) -> SessionFacts:
    metadata = session.get("metadata") or {}
    required = ("appointment_id", "patient_id", "provider_id", "starts_at", "ends_at")
    if any(not metadata.get(k) for k in required):
        raise ValidationError("INVALID_METADATA", "Invalid metadata on checkout session")
    if not _positive(metadata.get("duration_minutes")) or not _positive(metadata.get("hourly_rate")):
        raise ValidationError("INVALID_METADATA", "Invalid metadata on checkout session")
    _check_currency(session)
    return SessionFacts(
        appointment_id=str(metadata["appointment_id"]),
        patient_id=str(metadata["patient_id"]),
        provider_id=str(metadata["provider_id"]),
        payment_intent_id=_payment_intent_id(session),
    )


# ==========================================================
# Confirmation paths
# ==========================================================

def confirm_from_poll(session_id: str, *, processor: StripeCheckout) -> ledger.ConfirmResult:
    if not (session_id or "").strip():
        raise ValidationError("MISSING_SESSION_ID", "Missing session_id")

    session = processor.retrieve_session(session_id.strip())
    facts = session_facts_for_poll(session)
    breakdown = processor.fetch_fee_breakdown(facts.payment_intent_id)

    with get_conn() as conn:
        result = ledger.confirm_paid(
            conn,
            appointment_id=facts.appointment_id,
            processor_ref=facts.payment_intent_id,
            fee_breakdown=breakdown,
            source="poll",
        )
    if result.outcome == ledger.NOT_FOUND:
        raise NotFound("PAYMENT_NOT_FOUND", "Payment record not found for appointment")
    return result


def confirm_from_webhook(event: dict[str, Any], *, processor: StripeCheckout) -> tuple[str, Optional[str], Optional[str]]:
    """
    Returns (outcome, correlation_key, ignore_reason). outcome is one of
    "applied" or "ignored"; the HTTP response is 200 for both.
    """
    event_type = event.get("type")
    if event_type != CHECKOUT_COMPLETED:
        return "ignored", None, "UNHANDLED_EVENT_TYPE"

    session = ((event.get("data") or {}).get("object")) or {}
    facts = session_facts_for_webhook(session)

    # Processor fee lookup is a network call; keep it outside the transaction.
    breakdown = processor.fetch_fee_breakdown(facts.payment_intent_id)

    with get_conn() as conn:
        participants = directory.get_appointment_participants(conn, facts.appointment_id)
        if participants and participants != (facts.patient_id, facts.provider_id):
            raise ValidationError("INVALID_METADATA", "Session participants do not match the appointment")

        if facts.payment_intent_id:
            existing = payments_repo.get_payment_by_processor_ref(conn, facts.payment_intent_id)
            if existing:
                return "ignored", facts.appointment_id, "DUPLICATE_PROCESSOR_REF"

        result = ledger.confirm_paid(
            conn,
            appointment_id=facts.appointment_id,
            processor_ref=facts.payment_intent_id,
            fee_breakdown=breakdown,
            source="webhook",
        )

    if result.outcome == ledger.CONFIRMED:
        return "applied", facts.appointment_id, None
    if result.outcome == ledger.NOT_FOUND:
        return "ignored", facts.appointment_id, "PAYMENT_NOT_FOUND"
    return "ignored", facts.appointment_id, "ALREADY_PAID"
