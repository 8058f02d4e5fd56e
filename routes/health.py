from __future__ import annotations

import os

import sqlalchemy as sa
from fastapi import APIRouter
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError

from db import get_conn
from services.metrics import render_prometheus
from settings import settings

router = APIRouter(tags=["health"])


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            conn.execute(sa.text("SELECT 1"))
        return True, None
    except (SQLAlchemyError, RuntimeError) as exc:
        return False, type(exc).__name__


def _resolve_git_sha() -> str | None:
    return (
        (os.getenv("GIT_SHA") or "").strip()
        or (os.getenv("FLY_IMAGE_REF") or "").strip()
        or None
    )


@router.get("/healthz")
def healthz():
    db_ok, db_error = _check_db()
    return {
        "ok": True,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
    }


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": settings.ENV,
        "git_sha": _resolve_git_sha(),
    }


@router.get("/metrics", tags=["metrics"])
def metrics():
    return Response(content=render_prometheus(), media_type="text/plain; version=0.0.4")
