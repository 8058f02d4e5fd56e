from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime


@dataclass(frozen=True)
class Payment:
    id: str
    appointment_id: str
    payer_id: str
    payee_id: str
    currency: str
    hourly_rate_cents: int
    duration_minutes: int
    gross_cents: int
    platform_fee_cents: int
    payee_earnings_cents: int
    status: str
    processor_ref: Optional[str]
    processor_fee_cents: Optional[int]
    processor_net_cents: Optional[int]
    checkout_session_id: Optional[str]
    payout_request_id: Optional[str]
    payout_status: Optional[str]
    confirmed_at: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Payment":
        return cls(**{name: row.get(name) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class FeeBreakdown:
    """Processor-side fee/net for a charge (informational only)."""
    fee_cents: Optional[int] = None
    net_cents: Optional[int] = None
