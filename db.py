from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from settings import settings

_engine: Engine | None = None


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # TestClient/threadpool handlers share pooled connections across threads
        return {"check_same_thread": False}

    timeout_ms = int(settings.DB_STATEMENT_TIMEOUT_MS)
    return {
        "connect_timeout": 5,
        "application_name": "consultpay_api",
        # Safety: never allow long-running queries
        "options": f"-c statement_timeout={timeout_ms} -c idle_in_transaction_session_timeout={timeout_ms}",
    }


def init_engine() -> Engine:
    """
    Initialize the SQLAlchemy engine (psycopg2 pool on PostgreSQL).
    Called once at app startup, or lazily on first use.
    """
    global _engine
    if _engine is None:
        url = (settings.DATABASE_URL or "").strip()
        if not url:
            raise RuntimeError("DATABASE_URL is not set.")
        kwargs: dict = {"connect_args": _connect_args(url)}
        if not url.startswith("sqlite"):
            kwargs.update(pool_size=5, max_overflow=5, pool_pre_ping=True)
        _engine = create_engine(url, **kwargs)
    return _engine


def create_schema() -> None:
    """
    Create all tables directly from app.schema (dev/test only; deployments use alembic).
    """
    from app.schema import metadata

    metadata.create_all(init_engine())


@contextmanager
def get_conn():
    """
    Provides a transactional DB connection.
    Auto-commits on success, rolls back on error.
    """
    engine = init_engine()
    conn = engine.connect()

    try:
        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()


def dialect_insert(conn: Connection, table):
    """
    INSERT construct supporting ON CONFLICT for the active dialect.
    """
    if conn.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(table)
