# services/errors.py
from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from app.errors import (
    Conflict,
    Forbidden,
    NotFound,
    ReconcileError,
    Unauthenticated,
    UpstreamFailure,
    ValidationError,
)

logger = logging.getLogger("consultpay.errors")

ERROR_HTTP_MAP: dict[type[ReconcileError], int] = {
    ValidationError: 400,
    Unauthenticated: 401,
    Forbidden: 403,
    NotFound: 404,
    Conflict: 409,
    UpstreamFailure: 502,
}


def status_for(exc: ReconcileError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_HTTP_MAP:
            return ERROR_HTTP_MAP[cls]
    return 500


def error_body(exc: ReconcileError) -> dict:
    return {"detail": {"error": exc.code, "message": exc.message}}


def error_response(exc: ReconcileError) -> JSONResponse:
    status = status_for(exc)
    if status == 500:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    if status >= 500:
        logger.error("upstream_failure code=%s message=%s", exc.code, exc.message)
    return JSONResponse(status_code=status, content=error_body(exc))
