# Overview: Retry helpers for row-level races on the visit record store.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..errors import StoreConflict


# Lock timeouts and deadlocks surface as OperationalError; a lost conditional
# update surfaces as StoreConflict.
RETRYABLE_ERRORS = (OperationalError, StoreConflict)


def run_with_retry(func, *, attempts: int = 2, backoff_base: float = 0.05, retry_on=RETRYABLE_ERRORS):
    """
    Execute a read-modify-write operation, re-running it on a lost race.

    func must reload whatever it reads, so a retry observes the winner's
    write. Any failure rolls back the session before it propagates.

    The default of 2 attempts means "reload and retry once": a second
    conflict is surfaced to the caller as a transient failure.
    """
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
