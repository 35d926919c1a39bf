# Overview: Service-layer operations for safes; append-only money ledger with cached balances.

"""
Safe ledger.

- SafeTransaction rows are append-only: nothing here updates or deletes one.
  A correction is a new offsetting row.
- Safe.balance_* is a cache of the ledger. Every append adjusts it with
  an atomic UPDATE (balance = balance + delta) in the same transaction,
  and recompute_balance() rebuilds it from the rows.

Sign convention:
- deposit: amounts are >= 0 and added
- withdrawal: amounts are >= 0 and subtracted
- transfer / settlement / currency_adjustment: amounts carry their own
  sign and are added as given
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import case, func, update

from ..errors import ServiceError
from ..extensions import db
from ..models import Safe, SafeTransaction
from ..validation import (
    ConflictError,
    FieldErrors,
    ModelValidationPolicy,
    ValidationError,
    parse_decimal,
    validate_payload,
)
from .concurrency import run_with_retry


TX_DEPOSIT = "deposit"
TX_WITHDRAWAL = "withdrawal"
TX_TRANSFER = "transfer"
TX_SETTLEMENT = "settlement"
TX_CURRENCY_ADJUSTMENT = "currency_adjustment"

TRANSACTION_TYPES = (TX_DEPOSIT, TX_WITHDRAWAL, TX_TRANSFER, TX_SETTLEMENT, TX_CURRENCY_ADJUSTMENT)

SAFE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "parent_id", "description", "is_active"},
    required_on_create={"name", "code"},
)


class SafeError(ServiceError):
    """Raised when a safe operation is rejected."""
    pass


def signed_amounts(tx_type: str, usd_cents: int, lyd_cents: int) -> tuple[int, int]:
    if tx_type == TX_WITHDRAWAL:
        return -usd_cents, -lyd_cents
    return usd_cents, lyd_cents


def get_safe(safe_id: int) -> Safe:
    safe = db.session.get(Safe, safe_id)
    if safe is None:
        raise SafeError("Safe not found", status_code=404)
    return safe


def require_active_safe(safe_id: int) -> Safe:
    """Lookup used before linking a safe to an invoice or payment."""
    safe = get_safe(safe_id)
    if not safe.is_active:
        raise SafeError("Safe is not active", details={"safe_id": safe_id})
    return safe


def post_transaction(
    *,
    safe_id: int,
    type: str,
    amount_usd_cents: int = 0,
    amount_lyd_cents: int = 0,
    description: str | None = None,
    reference_type: str | None = None,
    reference_id=None,
    created_by_user_id: int | None = None,
    exchange_rate: Decimal | None = None,
) -> SafeTransaction:
    """
    Append one transaction and move the cached balance by its signed amount.

    Does not commit: the caller's transaction owns both writes.
    """
    if type not in TRANSACTION_TYPES:
        raise SafeError(f"Unknown transaction type: {type}")
    if type in (TX_DEPOSIT, TX_WITHDRAWAL) and (amount_usd_cents < 0 or amount_lyd_cents < 0):
        raise SafeError(f"{type} amounts must be >= 0")

    safe = db.session.get(Safe, safe_id)
    if safe is None:
        raise SafeError(f"Safe {safe_id} not found", status_code=404)
    if not safe.is_active:
        raise SafeError(f"Safe {safe_id} is not active")

    tx = SafeTransaction(
        safe_id=safe_id,
        type=type,
        amount_usd_cents=amount_usd_cents,
        amount_lyd_cents=amount_lyd_cents,
        exchange_rate=exchange_rate,
        description=description,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(tx)

    delta_usd, delta_lyd = signed_amounts(type, amount_usd_cents, amount_lyd_cents)
    db.session.execute(
        update(Safe)
        .where(Safe.id == safe_id)
        .values(
            balance_usd_cents=Safe.balance_usd_cents + delta_usd,
            balance_lyd_cents=Safe.balance_lyd_cents + delta_lyd,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.flush()
    # The UPDATE bypassed the identity map
    db.session.expire(safe, ["balance_usd_cents", "balance_lyd_cents"])
    return tx


def ledger_balance(safe_id: int) -> tuple[int, int]:
    """(usd, lyd) as summed from the ledger."""
    sign = case((SafeTransaction.type == TX_WITHDRAWAL, -1), else_=1)
    usd, lyd = (
        db.session.query(
            func.coalesce(func.sum(SafeTransaction.amount_usd_cents * sign), 0),
            func.coalesce(func.sum(SafeTransaction.amount_lyd_cents * sign), 0),
        )
        .filter(SafeTransaction.safe_id == safe_id)
        .one()
    )
    return int(usd), int(lyd)


def recompute_balance(safe_id: int) -> Safe:
    """
    Rebuild the cached balance from the ledger and commit.
    """
    def _op():
        safe = get_safe(safe_id)
        usd, lyd = ledger_balance(safe_id)
        safe.balance_usd_cents = usd
        safe.balance_lyd_cents = lyd
        db.session.commit()
        return safe

    return run_with_retry(_op)


def list_safes(include_inactive: bool = True) -> list[Safe]:
    query = db.session.query(Safe)
    if not include_inactive:
        query = query.filter(Safe.is_active.is_(True))
    return query.order_by(Safe.name.asc(), Safe.id.asc()).all()


def create_safe(payload: dict) -> Safe:
    patch = validate_payload(model=Safe, payload=payload, policy=SAFE_POLICY, partial=False)
    if db.session.query(Safe).filter_by(code=patch["code"]).first():
        raise ConflictError("Safe code already exists")
    if patch.get("parent_id") is not None:
        get_safe(patch["parent_id"])

    safe = Safe(**patch)
    db.session.add(safe)
    db.session.commit()
    return safe


def update_safe(safe_id: int, payload: dict) -> Safe:
    safe = get_safe(safe_id)
    patch = validate_payload(model=Safe, payload=payload, policy=SAFE_POLICY, partial=True)

    if "code" in patch and patch["code"] != safe.code:
        if db.session.query(Safe).filter_by(code=patch["code"]).first():
            raise ConflictError("Safe code already exists")
    if patch.get("parent_id") is not None:
        if patch["parent_id"] == safe_id:
            raise SafeError("A safe cannot be its own parent")
        get_safe(patch["parent_id"])

    for key, value in patch.items():
        setattr(safe, key, value)
    db.session.commit()
    return safe


def delete_safe(safe_id: int) -> None:
    """Only safes without any ledger rows can be deleted; otherwise deactivate."""
    safe = get_safe(safe_id)
    if db.session.query(SafeTransaction.id).filter_by(safe_id=safe_id).first():
        raise ConflictError("Safe has transactions; deactivate it instead")
    if db.session.query(Safe.id).filter_by(parent_id=safe_id).first():
        raise ConflictError("Safe has child safes")
    db.session.delete(safe)
    db.session.commit()


def list_transactions(
    safe_id: int | None = None,
    reference_type: str | None = None,
    reference_id=None,
    limit: int = 200,
) -> list[SafeTransaction]:
    query = db.session.query(SafeTransaction)
    if safe_id is not None:
        get_safe(safe_id)
        query = query.filter(SafeTransaction.safe_id == safe_id)
    if reference_type:
        query = query.filter(SafeTransaction.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(SafeTransaction.reference_id == str(reference_id))
    return query.order_by(SafeTransaction.id.desc()).limit(limit).all()


def record_manual_transaction(safe_id: int, payload: dict, user_id: int) -> SafeTransaction:
    """
    Staff-entered movement (cash count correction, owner withdrawal, ...).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    tx_type = errs.choice(payload, "type", TRANSACTION_TYPES)
    if payload.get("type") is None:
        errs.add("type", "type is required")
    signed = tx_type not in (TX_DEPOSIT, TX_WITHDRAWAL)
    minimum = None if signed else 0
    usd = errs.integer(payload, "amount_usd_cents", required=False, minimum=minimum) or 0
    lyd = errs.integer(payload, "amount_lyd_cents", required=False, minimum=minimum) or 0
    description = errs.string(payload, "description", required=False, max_length=255)
    exchange_rate = None
    if payload.get("exchange_rate") is not None:
        try:
            exchange_rate = parse_decimal(payload["exchange_rate"], "exchange_rate")
        except ValidationError as exc:
            errs.add("exchange_rate", exc.message)
    errs.raise_if_any()

    if usd == 0 and lyd == 0:
        raise SafeError("Transaction amount cannot be zero")

    def _op():
        tx = post_transaction(
            safe_id=safe_id,
            type=tx_type,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            description=description,
            reference_type="manual",
            created_by_user_id=user_id,
            exchange_rate=exchange_rate,
        )
        db.session.commit()
        return tx

    return run_with_retry(_op)
