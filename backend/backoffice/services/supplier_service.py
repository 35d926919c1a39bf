# Overview: Service-layer operations for suppliers.

from __future__ import annotations

from ..errors import ServiceError
from ..extensions import db
from ..models import StockPurchase, Supplier
from ..validation import ConflictError, FieldErrors, ModelValidationPolicy, validate_payload

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "code", "currency", "contact_name", "contact_phone", "address", "notes", "is_active",
    },
    required_on_create={"name", "code"},
)

CURRENCIES = ("LYD", "USD")


class SupplierError(ServiceError):
    """Raised for supplier operation errors."""
    pass


def _check_currency(patch: dict) -> None:
    if "currency" in patch and patch["currency"] not in CURRENCIES:
        errs = FieldErrors()
        errs.add("currency", f"currency must be one of: {', '.join(CURRENCIES)}")
        errs.raise_if_any()


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise SupplierError("Supplier not found", status_code=404)
    return supplier


def list_suppliers(include_inactive: bool = False) -> list[Supplier]:
    query = db.session.query(Supplier)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    return query.order_by(Supplier.name.asc(), Supplier.id.asc()).all()


def create_supplier(payload: dict) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    _check_currency(patch)
    if db.session.query(Supplier).filter_by(code=patch["code"]).first():
        raise ConflictError("Supplier code already exists")

    supplier = Supplier(**patch)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def update_supplier(supplier_id: int, payload: dict) -> Supplier:
    """balance_owed_cents is not writable here: only purchases and payments move it."""
    supplier = get_supplier(supplier_id)
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    _check_currency(patch)
    if "code" in patch and patch["code"] != supplier.code:
        if db.session.query(Supplier).filter_by(code=patch["code"]).first():
            raise ConflictError("Supplier code already exists")

    for key, value in patch.items():
        setattr(supplier, key, value)
    db.session.commit()
    return supplier


def delete_supplier(supplier_id: int) -> None:
    supplier = get_supplier(supplier_id)
    if supplier.balance_owed_cents > 0:
        raise ConflictError("Supplier still has an outstanding balance")
    if db.session.query(StockPurchase.id).filter_by(supplier_id=supplier_id).first():
        raise ConflictError("Supplier has stock purchases; deactivate it instead")
    db.session.delete(supplier)
    db.session.commit()
