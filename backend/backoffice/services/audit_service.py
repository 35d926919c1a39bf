# Overview: Service-layer operations for the invoice operation log.

from __future__ import annotations

import json

from ..extensions import db
from ..models import OperationLog


def write_operation_log(
    *,
    operation: str,
    invoice_id: int | None = None,
    product_id: int | None = None,
    quantity: int | None = None,
    details: dict | None = None,
    error: str | None = None,
    created_by_user_id: int | None = None,
) -> OperationLog:
    """Append one audit row. Does not commit."""
    row = OperationLog(
        operation=operation,
        invoice_id=invoice_id,
        product_id=product_id,
        quantity=quantity,
        details=json.dumps(details, sort_keys=True) if details is not None else None,
        error=error,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(row)
    db.session.flush()
    return row


def list_operations(invoice_id: int | None = None, limit: int = 200) -> list[OperationLog]:
    query = db.session.query(OperationLog)
    if invoice_id is not None:
        query = query.filter(OperationLog.invoice_id == invoice_id)
    return query.order_by(OperationLog.id.asc()).limit(limit).all()
