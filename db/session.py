"""
db/session.py

Engine and sessions for the production order store.

The engine is built on first use so importing this module never needs a
reachable database.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.config import resolve_database_url

_POOL_DEFAULTS = {"DB_POOL_SIZE": 5, "DB_MAX_OVERFLOW": 10, "DB_POOL_RECYCLE": 1800}


def _pool_option(name: str) -> int:
    raw_value = os.getenv(name, "").strip()
    return int(raw_value) if raw_value.isdigit() else _POOL_DEFAULTS[name]


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    database_url = resolve_database_url()
    if not database_url.startswith("postgresql"):
        raise RuntimeError("Only PostgreSQL URLs are supported; upserts rely on ON CONFLICT.")

    return create_engine(
        database_url,
        echo=os.getenv("SQL_ECHO", "").strip().lower() in {"1", "true", "yes", "on"},
        pool_pre_ping=True,
        pool_size=_pool_option("DB_POOL_SIZE"),
        max_overflow=_pool_option("DB_MAX_OVERFLOW"),
        pool_recycle=_pool_option("DB_POOL_RECYCLE"),
    )


@lru_cache(maxsize=1)
def _sessionmaker() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    """Open a new session on the shared engine."""
    return _sessionmaker()()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    with SessionLocal() as db:
        yield db
