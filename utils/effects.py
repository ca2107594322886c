"""
Best-effort side effects.

Once the primary write of an operation has committed, everything else it does
(linking a customer record, sending an email, pushing a notification) is
advisory: a failure is logged and the caller never hears about it.

- `side_effect(label, db)` wraps an inline step that runs before the response.
- `defer(tasks, label, fn, ...)` schedules `fn(db, ...)` to run after the
  response has been written, in its own DB session and error boundary.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

import database

logger = logging.getLogger(__name__)


@contextmanager
def side_effect(label: str, db: Optional[Session] = None) -> Iterator[None]:
    try:
        yield
    except Exception:
        logger.exception("%s failed", label)
        if db is not None:
            db.rollback()


def _report(label: str, result: Any) -> None:
    # Dispatchers return {"success": bool, ...} instead of raising.
    if isinstance(result, dict) and not result.get("success", True):
        logger.warning("%s failed: %s", label, result.get("error") or result.get("message"))
    else:
        logger.info("%s done", label)


def run_deferred(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    with database.session_scope() as db, side_effect(label, db):
        _report(label, fn(db, *args, **kwargs))


def defer(tasks: BackgroundTasks, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    tasks.add_task(run_deferred, label, fn, *args, **kwargs)
