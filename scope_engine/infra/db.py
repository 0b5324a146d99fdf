from __future__ import annotations

import os

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import Session, create_engine

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://scope:scope@db:5432/scope_engine",
)
LOCK_TIMEOUT_MS = int(os.getenv("LOCK_TIMEOUT_MS", "5000"))

engine = create_engine(DATABASE_URL, pool_pre_ping=True)


def get_engine() -> Engine:
    return engine


def apply_lock_timeout(session: Session, timeout_ms: int | None = None) -> None:
    """Bound row-lock waits for the current transaction.

    Only Postgres understands ``SET LOCAL lock_timeout``; other dialects
    serialize writers on their own and are left untouched.
    """
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        return
    value = LOCK_TIMEOUT_MS if timeout_ms is None else timeout_ms
    session.execute(text(f"SET LOCAL lock_timeout = {int(value)}"))


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
