from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """
    Validation or business-rule failure returned to the caller as
    {"success": false, "error": <message>, **flags}.

    Flags are extra booleans the mobile client branches on
    (needsVerification, expired, needsRegistration, ...).
    """

    def __init__(self, status_code: int, error: str, **flags: Any):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.flags = flags

    def to_dict(self) -> dict:
        return {"success": False, "error": self.error, **self.flags}


@contextmanager
def fail_as(message: str, db: Optional[Session] = None) -> Iterator[None]:
    """Turn anything unexpected inside the block into a generic 500 with `message`."""
    try:
        yield
    except ApiError:
        raise
    except Exception:
        logger.exception(message)
        if db is not None:
            db.rollback()
        raise ApiError(500, message)
