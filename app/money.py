# app/money.py
"""
Charge split math. Pure and deterministic; amounts leave this module as
integer minor units (pence) so they can be stored and summed exactly.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from app.errors import ValidationError

PLATFORM_FEE_RATE = Decimal("0.15")
_CENT = Decimal("0.01")

Amount = Union[Decimal, int, str]


@dataclass(frozen=True)
class FeeSplit:
    gross_cents: int
    fee_cents: int
    earnings_cents: int

    @property
    def gross(self) -> Decimal:
        return from_cents(self.gross_cents)

    @property
    def fee(self) -> Decimal:
        return from_cents(self.fee_cents)

    @property
    def earnings(self) -> Decimal:
        return from_cents(self.earnings_cents)


def _to_decimal(value: Amount | float | None, *, field: str) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("INVALID_RATE", f"{field} is not set")
    if isinstance(value, float):
        # go through str so 40.1 stays 40.1, not its binary expansion
        value = repr(value)
    try:
        dec = Decimal(str(value).strip()) if isinstance(value, str) else Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("INVALID_RATE", f"{field} is not a number")
    if not dec.is_finite():
        raise ValidationError("INVALID_RATE", f"{field} is not a number")
    return dec


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Amount | float) -> int:
    return int(round_money(_to_decimal(value, field="amount")) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(_CENT)


def format_amount(cents: int | None) -> str:
    return f"{from_cents(cents or 0):.2f}"


def split(hourly_rate: Amount | float | None, duration_minutes: int | None) -> FeeSplit:
    """
    gross = round(rate * minutes / 60, 2); fee = round(gross * 15%, 2); earnings = gross - fee.
    Rounding is half-up. Earnings are derived, never rounded on their own.
    """
    rate = _to_decimal(hourly_rate, field="hourly_rate")
    if rate < 0:
        raise ValidationError("INVALID_RATE", "hourly_rate must not be negative")

    if duration_minutes is None or isinstance(duration_minutes, bool):
        raise ValidationError("INVALID_DURATION", "duration_minutes is not set")
    try:
        minutes = int(duration_minutes)
    except (TypeError, ValueError):
        raise ValidationError("INVALID_DURATION", "duration_minutes is not a number")
    if minutes != duration_minutes or minutes <= 0:
        raise ValidationError("INVALID_DURATION", "duration_minutes must be a positive integer")

    gross = round_money(rate * Decimal(minutes) / Decimal(60))
    fee = round_money(gross * PLATFORM_FEE_RATE)
    earnings = gross - fee

    return FeeSplit(
        gross_cents=int(gross * 100),
        fee_cents=int(fee * 100),
        earnings_cents=int(earnings * 100),
    )
