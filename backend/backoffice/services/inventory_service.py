# Overview: Service-layer operations for inventory; per-branch stock counters.

# backend/backoffice/services/inventory_service.py
"""
Branch Inventory Invariants (authoritative)

Inventory model:
- One BranchInventory row per (product, branch) holding the on-hand quantity.
- Quantity is a stored counter, mutated only through this module.

Business invariants:
- On-hand quantity may never go negative. Decrements are a single
  conditional UPDATE (quantity >= n) inside the caller's transaction and
  the table carries a CHECK (quantity >= 0) as the last line.
- Restores are atomic increments; a missing row is created.
- decrement/restore never commit. The invoice lifecycle owns the unit of
  work and rolls everything back when any line fails.

Upsert is the manual stock edit used by staff; it replaces the quantity.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ServiceError
from ..extensions import db
from ..models import BranchInventory, Product
from ..validation import FieldErrors, ValidationError, validate_branch
from .concurrency import run_with_retry


class InventoryError(ServiceError):
    """Raised when an inventory operation is rejected."""
    pass


class InsufficientStockError(InventoryError):
    """
    Raised when a branch cannot cover the requested quantities.

    details["shortages"] lists every short product with what was requested
    and what is on hand.
    """

    def __init__(self, branch: str, shortages: list[dict]):
        names = ", ".join(s["product_name"] for s in shortages)
        super().__init__(
            f"Insufficient stock in {branch} for: {names}",
            details={"branch": branch, "shortages": shortages},
        )


def branches() -> tuple[str, ...]:
    return tuple(current_app.config["BRANCHES"])


def aggregate_quantities(lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    """Sum (product_id, quantity) pairs per product."""
    totals: dict[int, int] = defaultdict(int)
    for product_id, quantity in lines:
        totals[product_id] += quantity
    return dict(totals)


def get_quantity(product_id: int, branch: str) -> int:
    qty = (
        db.session.query(BranchInventory.quantity)
        .filter_by(product_id=product_id, branch=branch)
        .scalar()
    )
    return qty or 0


def check_availability(branch: str, needed: dict[int, int]) -> None:
    """
    Verify the branch holds at least needed[product_id] of every product.

    Reports all shortages at once. The decrement itself re-checks
    atomically, this only produces the descriptive error up front.
    """
    if not needed:
        return

    rows = (
        db.session.query(BranchInventory.product_id, BranchInventory.quantity)
        .filter(
            BranchInventory.branch == branch,
            BranchInventory.product_id.in_(list(needed.keys())),
        )
        .all()
    )
    on_hand = {product_id: qty for product_id, qty in rows}

    shortages = []
    for product_id in sorted(needed):
        requested = needed[product_id]
        available = on_hand.get(product_id, 0)
        if requested > available:
            product = db.session.get(Product, product_id)
            shortages.append({
                "product_id": product_id,
                "product_name": product.name if product else str(product_id),
                "requested": requested,
                "available": available,
            })

    if shortages:
        raise InsufficientStockError(branch, shortages)


def decrement(product_id: int, branch: str, quantity: int) -> None:
    """
    Take quantity out of (product, branch) in one conditional UPDATE.

    Zero rows matched means another request drained the stock since the
    check (or the row never existed): raise, the caller rolls back.
    """
    if quantity <= 0:
        raise InventoryError("quantity must be > 0")

    result = db.session.execute(
        update(BranchInventory)
        .where(
            BranchInventory.product_id == product_id,
            BranchInventory.branch == branch,
            BranchInventory.quantity >= quantity,
        )
        .values(quantity=BranchInventory.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = get_quantity(product_id, branch)
        product = db.session.get(Product, product_id)
        raise InsufficientStockError(branch, [{
            "product_id": product_id,
            "product_name": product.name if product else str(product_id),
            "requested": quantity,
            "available": available,
        }])


def restore(product_id: int, branch: str, quantity: int) -> None:
    """Put quantity back into (product, branch), creating the row if missing."""
    if quantity <= 0:
        raise InventoryError("quantity must be > 0")

    stmt = (
        update(BranchInventory)
        .where(
            BranchInventory.product_id == product_id,
            BranchInventory.branch == branch,
        )
        .values(quantity=BranchInventory.quantity + quantity)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(stmt).rowcount:
        return

    try:
        with db.session.begin_nested():
            db.session.add(BranchInventory(
                product_id=product_id,
                branch=branch,
                quantity=quantity,
                low_stock_threshold=current_app.config["DEFAULT_LOW_STOCK_THRESHOLD"],
            ))
    except IntegrityError:
        # Row created concurrently; increment it instead
        if not db.session.execute(stmt).rowcount:
            raise


def apply_deltas(branch: str, deltas: dict[int, int]) -> None:
    """
    Apply signed per-product changes in sale terms: positive = sell more
    (decrement stock), negative = give back (restore stock).
    """
    needed = {pid: d for pid, d in deltas.items() if d > 0}
    check_availability(branch, needed)
    for product_id in sorted(deltas):
        delta = deltas[product_id]
        if delta > 0:
            decrement(product_id, branch, delta)
        elif delta < 0:
            restore(product_id, branch, -delta)


def upsert_inventory(payload: dict) -> BranchInventory:
    """
    Create or replace a (product, branch) stock row.

    payload: product_id, branch, quantity, low_stock_threshold?
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    product_id = errs.integer(payload, "product_id", minimum=1)
    branch = validate_branch(payload.get("branch"), branches(), errs)
    quantity = errs.integer(payload, "quantity", minimum=0)
    threshold = errs.integer(payload, "low_stock_threshold", required=False, minimum=0)
    errs.raise_if_any()

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise InventoryError("Product not found", status_code=404)

        row = (
            db.session.query(BranchInventory)
            .filter_by(product_id=product_id, branch=branch)
            .with_for_update()
            .first()
        )
        if row is None:
            row = BranchInventory(
                product_id=product_id,
                branch=branch,
                low_stock_threshold=current_app.config["DEFAULT_LOW_STOCK_THRESHOLD"],
            )
            db.session.add(row)

        row.quantity = quantity
        if threshold is not None:
            row.low_stock_threshold = threshold

        db.session.commit()
        return row

    return run_with_retry(_op)


def get_branch_inventory(product_id: int) -> list[dict]:
    """
    Stock rows for every configured branch; missing rows read as zero.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise InventoryError("Product not found", status_code=404)

    rows = {row.branch: row for row in product.inventory}
    result = []
    for branch in branches():
        row = rows.get(branch)
        if row is not None:
            result.append(row.to_dict())
        else:
            result.append({
                "id": None,
                "product_id": product_id,
                "branch": branch,
                "quantity": 0,
                "low_stock_threshold": current_app.config["DEFAULT_LOW_STOCK_THRESHOLD"],
                "is_low_stock": True,
                "updated_at": None,
            })
    return result


def list_low_stock(branch: str | None = None) -> list[dict]:
    query = (
        db.session.query(BranchInventory, Product)
        .join(Product, Product.id == BranchInventory.product_id)
        .filter(
            BranchInventory.quantity <= BranchInventory.low_stock_threshold,
            Product.is_active.is_(True),
        )
    )
    if branch:
        if branch not in branches():
            errs = FieldErrors()
            validate_branch(branch, branches(), errs)
            errs.raise_if_any()
        query = query.filter(BranchInventory.branch == branch)

    items = []
    for row, product in query.order_by(BranchInventory.quantity.asc(), Product.name.asc()).all():
        data = row.to_dict()
        data["product_name"] = product.name
        data["sku"] = product.sku
        items.append(data)
    return items
