# deps/auth.py
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.directory.repository import get_role
from app.errors import Unauthenticated
from db import get_conn
from security import user_id_from_token

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> CurrentUser:
    if not creds or (creds.scheme or "").lower() != "bearer":
        raise Unauthenticated("UNAUTHORIZED", "Missing authentication token")

    user_id = user_id_from_token(creds.credentials)
    if not user_id:
        raise Unauthenticated("UNAUTHORIZED", "Invalid authentication token")

    # the directory is the source of truth for roles, not the token
    with get_conn() as conn:
        role = get_role(conn, user_id)
    if role is None:
        raise Unauthenticated("UNAUTHORIZED", "Unknown user")
    return CurrentUser(user_id=user_id, role=role)
