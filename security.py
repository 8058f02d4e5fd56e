from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from settings import settings

# -----------------------
# Bearer tokens (JWT)
# -----------------------
# Tokens are issued by the identity service. This module only needs the same
# secret to read them; issue_token exists for local tooling and tests.


def issue_token(user_id: str, minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = timedelta(minutes=minutes or settings.JWT_ACCESS_MINUTES)
    claims = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def read_claims(token: str) -> Dict[str, Any]:
    """Verified claims, or {} for anything expired, forged or malformed."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return {}


def user_id_from_token(token: str) -> Optional[str]:
    sub = str(read_claims(token).get("sub") or "").strip()
    return sub or None
