# Overview: Service-layer operations for stock purchases and their accounting entries.

"""
Stock purchases.

A purchase brings units into a branch and records how they were paid for,
all in one transaction:

- paid_now: withdraw the total from a safe (in the purchase currency);
  journal: debit inventory / credit cashbox
- on_credit: add the total to the supplier's balance_owed;
  journal: debit inventory / credit accounts_payable

Either way the branch stock is incremented and the product's cost price
becomes the purchase's cost per unit.
"""

from __future__ import annotations

from flask import current_app

from ..errors import ServiceError
from ..extensions import db
from ..models import AccountingEntry, Product, StockPurchase, Supplier
from ..validation import FieldErrors, ValidationError, parse_decimal, validate_branch
from . import inventory_service, safe_service
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number

PURCHASE_PAID_NOW = "paid_now"
PURCHASE_ON_CREDIT = "on_credit"
PURCHASE_TYPES = (PURCHASE_PAID_NOW, PURCHASE_ON_CREDIT)

CURRENCIES = ("LYD", "USD")


class PurchaseError(ServiceError):
    """Raised for stock purchase errors."""
    pass


def _parse(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errs = FieldErrors()
    data = {
        "product_id": errs.integer(payload, "product_id", minimum=1),
        "branch": validate_branch(payload.get("branch"), current_app.config["BRANCHES"], errs),
        "quantity": errs.integer(payload, "quantity", minimum=1),
        "cost_per_unit_cents": errs.integer(payload, "cost_per_unit_cents", minimum=0),
        "purchase_type": errs.choice(payload, "purchase_type", PURCHASE_TYPES),
        "currency": errs.choice(payload, "currency", CURRENCIES, default="LYD"),
        "supplier_id": errs.integer(payload, "supplier_id", required=False, minimum=1),
        "safe_id": errs.integer(payload, "safe_id", required=False, minimum=1),
        "supplier_invoice_number": errs.string(payload, "supplier_invoice_number", required=False, max_length=64),
        "exchange_rate": None,
    }
    if payload.get("purchase_type") is None:
        errs.add("purchase_type", "purchase_type is required")
    if payload.get("exchange_rate") is not None:
        try:
            rate = parse_decimal(payload["exchange_rate"], "exchange_rate")
            if rate <= 0:
                errs.add("exchange_rate", "exchange_rate must be > 0")
            data["exchange_rate"] = rate
        except ValidationError as exc:
            errs.add("exchange_rate", exc.message)

    if data["purchase_type"] == PURCHASE_PAID_NOW and data["safe_id"] is None:
        errs.add("safe_id", "safe_id is required for paid_now purchases")
    if data["purchase_type"] == PURCHASE_ON_CREDIT and data["supplier_id"] is None:
        errs.add("supplier_id", "supplier_id is required for on_credit purchases")
    errs.raise_if_any()
    return data


def _amounts(currency: str, total_cents: int) -> tuple[int, int]:
    if currency == "USD":
        return total_cents, 0
    return 0, total_cents


def create_purchase(payload: dict, user) -> StockPurchase:
    data = _parse(payload)

    def _op():
        product = db.session.get(Product, data["product_id"])
        if product is None:
            raise PurchaseError("Product not found", status_code=404)

        supplier = None
        if data["supplier_id"] is not None:
            supplier = lock_for_update(
                db.session.query(Supplier).filter_by(id=data["supplier_id"])
            ).first()
            if supplier is None:
                raise PurchaseError("Supplier not found", status_code=404)

        total = data["quantity"] * data["cost_per_unit_cents"]
        usd, lyd = _amounts(data["currency"], total)

        purchase = StockPurchase(
            product_id=product.id,
            product_name=product.name,
            branch=data["branch"],
            quantity=data["quantity"],
            cost_per_unit_cents=data["cost_per_unit_cents"],
            total_cost_cents=total,
            purchase_type=data["purchase_type"],
            currency=data["currency"],
            exchange_rate=data["exchange_rate"],
            supplier_id=data["supplier_id"],
            supplier_invoice_number=data["supplier_invoice_number"],
            safe_id=data["safe_id"],
            created_by_user_id=user.id,
        )
        db.session.add(purchase)
        db.session.flush()

        if data["purchase_type"] == PURCHASE_PAID_NOW:
            if total > 0:
                tx = safe_service.post_transaction(
                    safe_id=data["safe_id"],
                    type=safe_service.TX_WITHDRAWAL,
                    amount_usd_cents=usd,
                    amount_lyd_cents=lyd,
                    exchange_rate=data["exchange_rate"],
                    description=f"Stock purchase: {product.name} x{data['quantity']}",
                    reference_type="stock_purchase",
                    reference_id=purchase.id,
                    created_by_user_id=user.id,
                )
                purchase.safe_transaction_id = tx.id
            else:
                safe_service.require_active_safe(data["safe_id"])
            credit_account = ("cashbox", str(data["safe_id"]))
        else:
            supplier.balance_owed_cents += total
            credit_account = ("accounts_payable", str(supplier.id))

        inventory_service.restore(product.id, data["branch"], data["quantity"])
        product.cost_price_cents = data["cost_per_unit_cents"]

        db.session.add(AccountingEntry(
            entry_number=next_document_number(document_type="ACCOUNTING_ENTRY", prefix="JE"),
            description=f"Stock purchase #{purchase.id}: {product.name}",
            debit_account_type="inventory",
            debit_account_id=str(product.id),
            credit_account_type=credit_account[0],
            credit_account_id=credit_account[1],
            amount_usd_cents=usd,
            amount_lyd_cents=lyd,
            exchange_rate=data["exchange_rate"],
            reference_type="stock_purchase",
            reference_id=str(purchase.id),
            created_by_user_id=user.id,
        ))

        db.session.commit()
        return purchase

    return run_atomic(_op)


def list_purchases(
    product_id: int | None = None,
    supplier_id: int | None = None,
    limit: int = 200,
) -> list[StockPurchase]:
    query = db.session.query(StockPurchase)
    if product_id is not None:
        query = query.filter(StockPurchase.product_id == product_id)
    if supplier_id is not None:
        query = query.filter(StockPurchase.supplier_id == supplier_id)
    return query.order_by(StockPurchase.id.desc()).limit(limit).all()


def list_accounting_entries(
    reference_type: str | None = None,
    limit: int = 200,
) -> list[AccountingEntry]:
    query = db.session.query(AccountingEntry)
    if reference_type:
        query = query.filter(AccountingEntry.reference_type == reference_type)
    return query.order_by(AccountingEntry.id.desc()).limit(limit).all()
