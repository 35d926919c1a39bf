# Overview: Service-layer operations for document numbers; monotonic per document type.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ServiceError
from ..extensions import db
from ..models import DocumentSequence


class DocumentSequenceError(ServiceError):
    """Raised when document sequence operations fail."""
    pass


def _current(document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a type ("INV-000042").

    Runs inside the caller's transaction, so a rolled-back invoice also
    gives its number back. The increment is a single UPDATE, which takes
    the row lock; the first allocation for a type inserts the row inside a
    savepoint so losing the insert race only undoes the savepoint.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current(document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current(document_type) - 1

    return f"{prefix}-{next_num:0{pad}d}"
