# Overview: Service-layer operations for currency settlements and the owner's financial summary.

from __future__ import annotations

from sqlalchemy import func

from ..errors import ServiceError
from ..extensions import db
from ..models import BranchInventory, Expense, Product, SafeTransaction, SalesInvoice, Supplier
from ..validation import MAX_AMOUNT_CENTS, FieldErrors, ValidationError, parse_decimal
from . import safe_service
from .concurrency import run_atomic
from .expense_service import CURRENCIES, DIRECTION_OUTGOING
from .invoice_service import PAYMENT_CREDIT

REF_CURRENCY_SETTLEMENT = "currency_settlement"

SETTLEMENT_TYPES = (safe_service.TX_SETTLEMENT, safe_service.TX_CURRENCY_ADJUSTMENT)

RECENT_TRANSACTIONS = 10


class SettlementError(ServiceError):
    """Raised when a currency settlement is rejected."""
    pass


def create_settlement(payload: dict, user) -> SafeTransaction:
    """
    Post a currency settlement or adjustment on one safe.

    payload: safe_id, type?, amount_usd_cents, amount_lyd_cents,
    exchange_rate?, description?

    Amounts are signed. A settlement exchanges one currency for the other
    inside the safe: both amounts are non-zero with opposite signs and the
    exchange rate is required. A currency_adjustment moves either amount
    on its own.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    safe_id = errs.integer(payload, "safe_id", minimum=1)
    tx_type = errs.choice(payload, "type", SETTLEMENT_TYPES, default=safe_service.TX_SETTLEMENT)
    usd = errs.integer(payload, "amount_usd_cents", required=False, minimum=-MAX_AMOUNT_CENTS) or 0
    lyd = errs.integer(payload, "amount_lyd_cents", required=False, minimum=-MAX_AMOUNT_CENTS) or 0
    description = errs.string(payload, "description", required=False, max_length=255)

    exchange_rate = None
    if payload.get("exchange_rate") is not None:
        try:
            exchange_rate = parse_decimal(payload["exchange_rate"], "exchange_rate")
            if exchange_rate <= 0:
                errs.add("exchange_rate", "exchange_rate must be > 0")
        except ValidationError as exc:
            errs.add("exchange_rate", exc.message)
    elif tx_type == safe_service.TX_SETTLEMENT:
        errs.add("exchange_rate", "exchange_rate is required for a settlement")
    errs.raise_if_any()

    if usd == 0 and lyd == 0:
        raise SettlementError("Settlement amount cannot be zero")
    if tx_type == safe_service.TX_SETTLEMENT and (usd == 0 or lyd == 0 or (usd > 0) == (lyd > 0)):
        raise SettlementError(
            "A settlement must move USD and LYD in opposite directions",
            details={"amount_usd_cents": usd, "amount_lyd_cents": lyd},
        )

    def _op():
        tx = safe_service.post_transaction(
            safe_id=safe_id,
            type=tx_type,
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            exchange_rate=exchange_rate,
            description=description or f"Currency {tx_type.replace('_', ' ')}",
            reference_type=REF_CURRENCY_SETTLEMENT,
            created_by_user_id=user.id,
        )
        db.session.commit()
        return tx

    return run_atomic(_op)


def list_settlements(safe_id: int | None = None) -> list[SafeTransaction]:
    query = db.session.query(SafeTransaction).filter(SafeTransaction.reference_type == REF_CURRENCY_SETTLEMENT)
    if safe_id is not None:
        query = query.filter(SafeTransaction.safe_id == safe_id)
    return query.order_by(SafeTransaction.id.desc()).all()


def financial_summary() -> dict:
    """
    Owner dashboard totals: cash in safes, money owed both ways, stock at
    cost, outgoing expenses and the latest safe movements.
    """
    safes = safe_service.list_safes(include_inactive=False)

    customer_debt = (
        db.session.query(func.coalesce(func.sum(SalesInvoice.remaining_amount_cents), 0))
        .filter(SalesInvoice.payment_type == PAYMENT_CREDIT)
        .scalar()
    )

    supplier_debt = {currency: 0 for currency in CURRENCIES}
    rows = (
        db.session.query(Supplier.currency, func.coalesce(func.sum(Supplier.balance_owed_cents), 0))
        .group_by(Supplier.currency)
        .all()
    )
    for currency, owed in rows:
        supplier_debt[currency] = supplier_debt.get(currency, 0) + int(owed)

    # Products with an unknown cost are left out
    goods_capital = (
        db.session.query(func.coalesce(func.sum(BranchInventory.quantity * Product.cost_price_cents), 0))
        .join(Product, Product.id == BranchInventory.product_id)
        .filter(Product.cost_price_cents.isnot(None))
        .scalar()
    )

    expenses = {currency: 0 for currency in CURRENCIES}
    rows = (
        db.session.query(Expense.currency, func.coalesce(func.sum(Expense.amount_cents), 0))
        .filter(Expense.direction == DIRECTION_OUTGOING)
        .group_by(Expense.currency)
        .all()
    )
    for currency, spent in rows:
        expenses[currency] = int(spent)

    recent = (
        db.session.query(SafeTransaction)
        .order_by(SafeTransaction.id.desc())
        .limit(RECENT_TRANSACTIONS)
        .all()
    )

    return {
        "total_safe_balance_usd_cents": sum(s.balance_usd_cents for s in safes),
        "total_safe_balance_lyd_cents": sum(s.balance_lyd_cents for s in safes),
        "safes": [
            {
                "id": s.id,
                "code": s.code,
                "name": s.name,
                "balance_usd_cents": s.balance_usd_cents,
                "balance_lyd_cents": s.balance_lyd_cents,
            }
            for s in safes
        ],
        "total_customer_debt_cents": int(customer_debt or 0),
        "total_supplier_debt_cents": sum(supplier_debt.values()),
        "supplier_debt_by_currency": supplier_debt,
        "goods_capital_cents": int(goods_capital or 0),
        "expenses_by_currency": expenses,
        "recent_transactions": [tx.to_dict() for tx in recent],
    }
