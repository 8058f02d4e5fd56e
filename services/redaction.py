from __future__ import annotations

import re
from typing import Any

# Webhook bodies are stored for audit; payout receivers and credentials must
# not land in the table (or the logs) in clear text.

_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")

_SECRET_KEY_PARTS = ("token", "authorization", "secret", "signature", "transmission-sig")
_SECRET_TEXT_PARTS = ("access_token", "bearer ")

REDACTED = "[REDACTED]"


def redact_text(value: str) -> str:
    text = value or ""
    lowered = text.lower()
    if any(part in lowered for part in _SECRET_TEXT_PARTS):
        return REDACTED
    return _EMAIL_RE.sub(lambda m: f"{m.group(1)}***{m.group(2)}", text)


def _secret_key(key: str) -> bool:
    k = (key or "").lower()
    return any(part in k for part in _SECRET_KEY_PARTS)


def redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy of payload safe to persist: payout receivers and secrets masked."""
    return {k: REDACTED if _secret_key(k) else redact_value(v) for k, v in payload.items()}
