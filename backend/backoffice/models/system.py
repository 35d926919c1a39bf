from __future__ import annotations

import json

from ..extensions import db
from backoffice.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic document sequences.

    WHY: Prevent race conditions when generating invoice numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )


class IdempotencyKey(db.Model):
    """
    Client-supplied request key.

    PENDING: a request holding the key is running (or died before finishing).
    COMPLETED: response_status/response_body hold the reply to replay.
    """
    __tablename__ = "idempotency_keys"

    key = db.Column(db.String(128), primary_key=True)
    scope = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    response_status = db.Column(db.Integer, nullable=True)
    response_body = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def response_json(self):
        if self.response_body is None:
            return None
        return json.loads(self.response_body)


class OutboxEvent(db.Model):
    """
    Secondary effect recorded in the same transaction as the primary write
    and executed afterwards by outbox_service.
    """
    __tablename__ = "outbox_events"
    __table_args__ = (
        db.Index("ix_outbox_events_status_id", "status", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False)
    payload = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def payload_json(self) -> dict:
        return json.loads(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "payload": self.payload_json(),
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
        }


class OperationLog(db.Model):
    """Audit trail of invoice operations (append-only, best-effort)."""
    __tablename__ = "operation_log"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    operation = db.Column(db.String(64), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, nullable=True, index=True)
    product_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=True)
    details = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operation": self.operation,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "details": json.loads(self.details) if self.details else None,
            "error": self.error,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
