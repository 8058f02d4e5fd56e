"""
In-process counters, exposed as Prometheus text on /metrics.

Counters are per-process and reset on restart; the scraper handles that.
"""
from __future__ import annotations

from threading import Lock
from typing import Tuple

LabelKey = Tuple[Tuple[str, str], ...]

HELP = {
    "http_requests_total": "HTTP responses by route template and status",
    "charge_confirmations_total": "confirm_paid calls by source and outcome",
    "payout_settlements_total": "Payout settlement steps by rail and result",
    "webhook_events_total": "Inbound webhook deliveries",
}

_lock = Lock()
_series: dict[str, dict[LabelKey, int]] = {}


def _key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _inc(name: str, **labels: str) -> None:
    key = _key(labels)
    with _lock:
        bucket = _series.setdefault(name, {})
        bucket[key] = bucket.get(key, 0) + 1


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", route=route, status=str(status))


def increment_charge_confirmation(source: str, outcome: str) -> None:
    _inc("charge_confirmations_total", source=source, outcome=outcome)


def increment_payout_settlement(rail: str, result: str) -> None:
    _inc("payout_settlements_total", rail=rail, result=result)


def increment_webhook_event(provider: str, signature_valid: bool, applied: bool) -> None:
    _inc(
        "webhook_events_total",
        provider=provider,
        signature_valid=str(signature_valid).lower(),
        applied=str(applied).lower(),
    )


def get_counter(name: str, **labels: str) -> int:
    with _lock:
        return _series.get(name, {}).get(_key(labels), 0)


def reset() -> None:
    with _lock:
        _series.clear()


def render_prometheus() -> str:
    out: list[str] = []
    with _lock:
        for name in sorted(_series):
            if name in HELP:
                out.append(f"# HELP {name} {HELP[name]}")
            out.append(f"# TYPE {name} counter")
            for key, value in sorted(_series[name].items()):
                labels = ",".join(f'{k}="{v}"' for k, v in key)
                out.append(f"{name}{{{labels}}} {value}" if labels else f"{name} {value}")
    return "\n".join(out) + "\n" if out else ""
