from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Any
from datetime import datetime


@dataclass(frozen=True)
class PayoutRequest:
    id: str
    holder_id: str
    amount_cents: int
    currency: str
    destination: Optional[str]
    status: str
    resolved_at: Optional[datetime]
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PayoutRequest":
        return cls(**{name: row.get(name) for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class PayoutPayment:
    id: str
    request_id: str
    holder_id: str
    amount_cents: int
    currency: str
    rail: str
    rail_reference: Optional[str]
    status: str
    processed_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PayoutPayment":
        return cls(**{name: row.get(name) for name in cls.__dataclass_fields__})
