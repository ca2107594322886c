from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

SQLITE_FALLBACK = "sqlite:///./retail_hub.db"

# Bare scheme -> SQLAlchemy dialect+driver (psycopg v3, not psycopg2).
_PG_SCHEMES = {
    "postgres": "postgresql+psycopg",
    "postgresql": "postgresql+psycopg",
}


def normalize_database_url(url: str | None) -> str:
    if not url:
        return SQLITE_FALLBACK
    scheme, sep, rest = url.partition("://")
    if sep and scheme in _PG_SCHEMES:
        return f"{_PG_SCHEMES[scheme]}://{rest}"
    return url


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL"))

# Sync routes, background tasks and the scheduler all use sessions off the main thread.
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    echo=os.getenv("SQL_ECHO", "0") == "1",
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request: deferred tasks, sweeps, scripts."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
