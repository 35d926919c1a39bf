# Overview: Service-layer operations for the outbox; deferred secondary effects.

"""
Outbox for best-effort secondary effects.

A sale, edit, delete or return commits its primary write (invoice, items,
stock) together with OutboxEvent rows describing what still has to happen
(safe postings, audit rows). dispatch_pending() runs those afterwards, each
event in its own transaction, so a failing posting never undoes the sale.

Event lifecycle:
    PENDING --handler ok--> DONE
    PENDING --handler fails--> PENDING (attempts + 1, last_error)
    PENDING --fails OUTBOX_MAX_ATTEMPTS times--> FAILED

Failures are logged (WARNING per attempt, ERROR when given up) and kept on
the row; `flask outbox dispatch` retries, `flask outbox failed` lists.
"""

from __future__ import annotations

import json
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import OutboxEvent
from backoffice.time_utils import utcnow
from . import audit_service, safe_service

logger = logging.getLogger(__name__)

EVENT_SAFE_POST = "safe.post"
EVENT_AUDIT_LOG = "audit.log"

STATUS_PENDING = "PENDING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"


def _handle_safe_post(payload: dict) -> None:
    safe_service.post_transaction(**payload)


def _handle_audit_log(payload: dict) -> None:
    audit_service.write_operation_log(**payload)


HANDLERS = {
    EVENT_SAFE_POST: _handle_safe_post,
    EVENT_AUDIT_LOG: _handle_audit_log,
}


def enqueue(event_type: str, payload: dict) -> OutboxEvent:
    """Record a secondary effect in the caller's transaction. Does not commit."""
    if event_type not in HANDLERS:
        raise ValueError(f"Unknown outbox event type: {event_type}")
    event = OutboxEvent(
        event_type=event_type,
        payload=json.dumps(payload, sort_keys=True),
        status=STATUS_PENDING,
        attempts=0,
    )
    db.session.add(event)
    return event


def enqueue_safe_post(**payload) -> OutboxEvent:
    return enqueue(EVENT_SAFE_POST, payload)


def enqueue_audit(**payload) -> OutboxEvent:
    return enqueue(EVENT_AUDIT_LOG, payload)


def _process(event_id: int) -> bool:
    """
    Run one event in its own transaction. Returns True when it succeeded.
    """
    event = db.session.get(OutboxEvent, event_id)
    if event is None or event.status != STATUS_PENDING:
        return False

    event_type = event.event_type
    try:
        HANDLERS[event_type](event.payload_json())
        event.status = STATUS_DONE
        event.attempts += 1
        event.last_error = None
        event.processed_at = utcnow()
        db.session.commit()
        return True
    except Exception as exc:
        db.session.rollback()
        _record_failure(event_id, event_type, exc)
        return False


def _record_failure(event_id: int, event_type: str, exc: Exception) -> None:
    max_attempts = current_app.config.get("OUTBOX_MAX_ATTEMPTS", 5)

    event = db.session.get(OutboxEvent, event_id)
    event.attempts += 1
    event.last_error = f"{type(exc).__name__}: {exc}"
    if event.attempts >= max_attempts:
        event.status = STATUS_FAILED
        event.processed_at = utcnow()
        logger.error(
            "Outbox event %s (%s) failed permanently after %s attempts: %s",
            event_id, event_type, event.attempts, event.last_error,
        )
    else:
        logger.warning(
            "Outbox event %s (%s) failed (attempt %s/%s): %s",
            event_id, event_type, event.attempts, max_attempts, event.last_error,
        )
    db.session.commit()


def dispatch_pending(limit: int = 100) -> dict:
    """
    Run pending events oldest first.

    Handler failures never propagate; the summary says what happened.
    """
    query = db.session.query(OutboxEvent.id).filter(OutboxEvent.status == STATUS_PENDING)
    ids = [row[0] for row in query.order_by(OutboxEvent.id.asc()).limit(limit).all()]

    processed = failed = 0
    for event_id in ids:
        if _process(event_id):
            processed += 1
        else:
            failed += 1
    return {"processed": processed, "failed": failed}


def list_events(status: str | None = None, limit: int = 200) -> list[OutboxEvent]:
    query = db.session.query(OutboxEvent)
    if status:
        query = query.filter(OutboxEvent.status == status)
    return query.order_by(OutboxEvent.id.asc()).limit(limit).all()


def dispatch_after_commit() -> None:
    """
    Called by routes once their primary write has committed. Never raises:
    events that could not be dispatched stay PENDING for `flask outbox dispatch`.
    """
    try:
        dispatch_pending()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Outbox dispatch failed; events stay pending")
