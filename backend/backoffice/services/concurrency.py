# Overview: Locking and retry helpers shared by every service that writes.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts on versioned rows). func
    must be safe to re-run from scratch: the session is rolled back first.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after concurrency failure (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    run_with_retry for a unit of work that commits itself: any exception
    rolls the whole session back before it propagates.
    """
    def _op():
        try:
            return func()
        except Exception:
            db.session.rollback()
            raise
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
