# backend/backoffice/services/products_service.py
"""
Products Service

- Product master data with an optional opening stock for one branch
- Hard delete only while no invoice line points at the product; otherwise
  deactivate it (is_active=false) to keep invoice history intact
"""
from __future__ import annotations
from flask import current_app
from ..errors import ServiceError
from ..extensions import db
from ..models import BranchInventory, InvoiceItem, Product, StockPurchase
from ..validation import (
    ConflictError,
    FieldErrors,
    ModelValidationPolicy,
    enforce_money_range,
    validate_branch,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "description", "price_cents", "cost_price_cents", "is_active"},
    required_on_create={"name"},
)

# Fields on the create payload that are not Product columns
OPENING_STOCK_FIELDS = ("branch", "initial_quantity", "low_stock_threshold")


class ProductError(ServiceError):
    """Raised for product operation errors."""
    pass


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable_fields:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise ProductError("Product not found", status_code=404)
    return p


def list_products(
    search: str | None = None,
    category: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
    include_cost: bool = True,
) -> dict:
    """
    Product listing with optional name/SKU search and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(db.or_(Product.name.ilike(like), Product.sku.ilike(like)))
    if category:
        base_query = base_query.filter(Product.category == category)
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict(include_cost=include_cost) for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict(include_cost=include_cost) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def _check_sku(sku: str | None, product_id: int | None = None) -> None:
    if not sku:
        return
    query = db.session.query(Product).filter(Product.sku == sku)
    if product_id is not None:
        query = query.filter(Product.id != product_id)
    if query.first():
        raise ConflictError("SKU already exists.")


def create_product(payload: dict) -> Product:
    """
    Create a product; branch + initial_quantity seed its BranchInventory row.
    """
    if not isinstance(payload, dict):
        payload = {}
    product_fields = {k: v for k, v in payload.items() if k not in OPENING_STOCK_FIELDS}
    patch = validate_payload(model=Product, payload=product_fields, policy=PRODUCT_POLICY, partial=False)
    enforce_money_range(patch, "price_cents", "cost_price_cents")

    errs = FieldErrors()
    branch = None
    initial_quantity = 0
    threshold = None
    if any(payload.get(k) is not None for k in OPENING_STOCK_FIELDS):
        branch = validate_branch(payload.get("branch"), current_app.config["BRANCHES"], errs)
        initial_quantity = errs.integer(payload, "initial_quantity", required=False, minimum=0) or 0
        threshold = errs.integer(payload, "low_stock_threshold", required=False, minimum=0)
    errs.raise_if_any()

    _check_sku(patch.get("sku"))

    p = Product()
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.flush()

    if branch:
        db.session.add(BranchInventory(
            product_id=p.id,
            branch=branch,
            quantity=initial_quantity,
            low_stock_threshold=(
                threshold if threshold is not None
                else current_app.config["DEFAULT_LOW_STOCK_THRESHOLD"]
            ),
        ))

    db.session.commit()
    return p


def update_product(product_id: int, payload: dict) -> Product:
    p = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_money_range(patch, "price_cents", "cost_price_cents")

    if "sku" in patch and patch["sku"] != p.sku:
        _check_sku(patch["sku"], product_id=p.id)

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def delete_product(product_id: int) -> None:
    """
    Delete a product and its stock rows.

    Refused (409) while invoice lines or stock purchases reference it.
    """
    p = get_product(product_id)
    if db.session.query(InvoiceItem.id).filter_by(product_id=product_id).first():
        raise ConflictError("Product is referenced by invoices; deactivate it instead")
    if db.session.query(StockPurchase.id).filter_by(product_id=product_id).first():
        raise ConflictError("Product has stock purchases; deactivate it instead")

    db.session.delete(p)
    db.session.commit()
