# Overview: Service-layer operations for idempotency keys on retried mutating requests.

"""
Idempotency guard.

A key is in one of two states:
- PENDING: some request acquired it and has not finished
- COMPLETED: the response it produced is stored for replay

acquire() is an insert-if-absent on the primary key, committed on its own
so a concurrent retry sees it immediately; the loser of the insert race
gets an IntegrityError and reads the winner's state instead of running.

finalize() is best-effort: if storing the response fails the key stays
PENDING and a later retry answers "being processed" rather than running the
operation twice. release() drops a PENDING key when the guarded operation
failed, so the client can retry with corrected input.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import IdempotencyKey
from ..validation import ConflictError, ValidationError
from backoffice.time_utils import utcnow

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"

ACQUIRED = "ACQUIRED"
REPLAY = "REPLAY"
IN_PROGRESS = "IN_PROGRESS"

IN_PROGRESS_BODY = {"message": "Request is being processed"}

MAX_KEY_LENGTH = 128


@dataclass(frozen=True)
class IdempotencyResult:
    """
    Outcome of acquire().

    state: ACQUIRED (run the operation), REPLAY (answer status/body),
    IN_PROGRESS (another request holds the key)
    """
    state: str
    status: int | None = None
    body: dict | None = None

    @property
    def acquired(self) -> bool:
        return self.state == ACQUIRED


def _check_key(key: str) -> None:
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            "Idempotency key too long",
            [{"field": "idempotency_key", "message": f"must be at most {MAX_KEY_LENGTH} characters"}],
        )


def _existing_result(row: IdempotencyKey, scope: str) -> IdempotencyResult:
    if row.scope != scope:
        raise ConflictError("Idempotency key was already used for a different operation")
    if row.status == STATUS_COMPLETED:
        return IdempotencyResult(REPLAY, row.response_status, row.response_json())
    return IdempotencyResult(IN_PROGRESS, 200, dict(IN_PROGRESS_BODY))


def acquire(key: str | None, scope: str) -> IdempotencyResult:
    """
    Reserve key for scope (e.g. "invoice.create:7" or "invoice.return:12:7",
    the last part being the acting user id).

    No key means no deduplication: always ACQUIRED, nothing stored.
    """
    if not key:
        return IdempotencyResult(ACQUIRED)
    _check_key(key)

    row = db.session.get(IdempotencyKey, key)
    if row is not None:
        return _existing_result(row, scope)

    db.session.add(IdempotencyKey(
        key=key,
        scope=scope,
        status=STATUS_PENDING,
        created_at=utcnow(),
    ))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = db.session.get(IdempotencyKey, key)
        if row is None:
            raise
        return _existing_result(row, scope)

    return IdempotencyResult(ACQUIRED)


def finalize(key: str | None, status: int, body: dict) -> bool:
    """
    Store the response for replay. Never raises; returns False on failure.
    """
    if not key:
        return True
    try:
        row = db.session.get(IdempotencyKey, key)
        if row is None:
            logger.warning("Idempotency key %s vanished before finalize", key)
            return False
        row.status = STATUS_COMPLETED
        row.response_status = status
        row.response_body = json.dumps(body)
        row.completed_at = utcnow()
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to finalize idempotency key %s", key)
        return False


def release(key: str | None) -> None:
    """Drop a PENDING key after the guarded operation failed."""
    if not key:
        return
    try:
        db.session.query(IdempotencyKey).filter_by(key=key, status=STATUS_PENDING).delete()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to release idempotency key %s", key)


def purge_completed(older_than_days: int) -> int:
    """Delete COMPLETED keys older than the cutoff. Returns the count."""
    cutoff = utcnow() - timedelta(days=older_than_days)
    deleted = (
        db.session.query(IdempotencyKey)
        .filter(
            IdempotencyKey.status == STATUS_COMPLETED,
            IdempotencyKey.created_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
