# Overview: Service-layer operations for sales invoices; create, edit, delete, return and reads.

"""
Invoice lifecycle.

WHY: An invoice is the operation of record for a sale. Its primary write
(invoice row, item rows, branch stock) is one transaction: any failure,
including running out of stock half way through the lines, rolls all of it
back. Money side effects (safe postings) and audit rows are secondary:
they are enqueued in the same transaction as outbox events and executed
after commit, so a bookkeeping failure never loses a sale.

Totals:
    subtotal = sum(quantity * unit_price)
    discount = min(value, subtotal)                      (amount, in cents)
             = min(round_half_up(subtotal * value / 100), subtotal)  (percentage)
    total    = max(subtotal - discount + service, 0)

Payment state:
- cash: paid = total, remaining = 0, status "paid"
- credit: remaining = total - sum(payments), never negative; status is
  "unpaid" / "partially_paid" / "paid"
- credit invoices never move a safe themselves; their money arrives
  through credit payments

Safe postings (cash invoices with a linked safe), all in LYD:
- create: deposit of total                  reference_type "invoice"
- edit: deposit / withdrawal of |new - old| "invoice_edit_add" / "invoice_edit_return"
        only when the difference exceeds EDIT_EPSILON_CENTS
- delete: withdrawal of total               "invoice_delete"
- return: withdrawal of the refund          "invoice_return"
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func

from ..errors import ServiceError
from ..extensions import db
from ..models import SalesInvoice, InvoiceItem, Product, CreditPayment
from ..validation import FieldErrors, ValidationError, parse_decimal, parse_strict_int, validate_branch
from . import inventory_service, outbox_service, safe_service
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number


PAYMENT_CASH = "cash"
PAYMENT_CREDIT = "credit"
PAYMENT_TYPES = (PAYMENT_CASH, PAYMENT_CREDIT)

DISCOUNT_AMOUNT = "amount"
DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_TYPES = (DISCOUNT_AMOUNT, DISCOUNT_PERCENTAGE)

STATUS_PAID = "paid"
STATUS_UNPAID = "unpaid"
STATUS_PARTIALLY_PAID = "partially_paid"
PAYMENT_STATUSES = (STATUS_PAID, STATUS_UNPAID, STATUS_PARTIALLY_PAID)

# Differences of one cent or less are rounding noise, not a sale change
EDIT_EPSILON_CENTS = 1

DOCUMENT_TYPE = "SALES_INVOICE"
DOCUMENT_PREFIX = "INV"


class InvoiceError(ServiceError):
    """Raised for invoice operation errors."""
    pass


class InvoiceNotFoundError(InvoiceError):
    status_code = 404


class InvoiceForbiddenError(InvoiceError):
    status_code = 403


@dataclass
class ReturnResult:
    """Outcome of a return: the kept invoice, or deleted=True on a full return."""
    invoice_id: int
    invoice_number: str
    refund_amount_cents: int
    deleted: bool
    invoice: SalesInvoice | None = None

    def to_dict(self) -> dict:
        if self.deleted:
            return {
                "deleted": True,
                "invoice_id": self.invoice_id,
                "invoice_number": self.invoice_number,
                "refund_amount_cents": self.refund_amount_cents,
            }
        return {
            "deleted": False,
            "refund_amount_cents": self.refund_amount_cents,
            "invoice": self.invoice.to_dict(),
        }


# =============================================================================
# Totals
# =============================================================================

def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_discount(subtotal_cents: int, discount_type: str, discount_value) -> int:
    value = Decimal(discount_value or 0)
    if discount_type == DISCOUNT_PERCENTAGE:
        amount = round_half_up(Decimal(subtotal_cents) * value / Decimal(100))
    else:
        amount = round_half_up(value)
    return max(min(amount, subtotal_cents), 0)


def compute_total(subtotal_cents: int, discount_cents: int, service_cents: int) -> int:
    return max(subtotal_cents - discount_cents + service_cents, 0)


def payment_status_for(total_cents: int, paid_cents: int) -> str:
    if paid_cents <= 0 and total_cents > 0:
        return STATUS_UNPAID
    if paid_cents < total_cents:
        return STATUS_PARTIALLY_PAID
    return STATUS_PAID


def credit_paid_cents(invoice_id: int) -> int:
    paid = (
        db.session.query(func.coalesce(func.sum(CreditPayment.amount_cents), 0))
        .filter(CreditPayment.invoice_id == invoice_id)
        .scalar()
    )
    return int(paid or 0)


def _apply_totals(invoice: SalesInvoice) -> None:
    """
    Recompute every money field from the items and the stored
    discount/service inputs.
    """
    subtotal = sum(item.line_total_cents for item in invoice.items)
    discount = compute_discount(subtotal, invoice.discount_type, invoice.discount_value)
    _set_totals(invoice, subtotal, discount)


def _set_totals(invoice: SalesInvoice, subtotal: int, discount: int) -> None:
    invoice.subtotal_cents = subtotal
    invoice.discount_amount_cents = discount
    invoice.total_amount_cents = compute_total(subtotal, discount, invoice.service_amount_cents)

    if invoice.is_credit:
        paid = credit_paid_cents(invoice.id) if invoice.id else 0
        remaining = invoice.total_amount_cents - paid
        if remaining < 0:
            raise InvoiceError(
                "Invoice total cannot drop below the amount already paid",
                details={"paid_amount_cents": paid, "total_amount_cents": invoice.total_amount_cents},
            )
        invoice.paid_amount_cents = paid
        invoice.remaining_amount_cents = remaining
        invoice.payment_status = payment_status_for(invoice.total_amount_cents, paid)
    else:
        invoice.paid_amount_cents = invoice.total_amount_cents
        invoice.remaining_amount_cents = 0
        invoice.payment_status = STATUS_PAID


# =============================================================================
# Input parsing
# =============================================================================

def _parse_items(raw_items, errs: FieldErrors, *, field: str = "items") -> list[dict]:
    """
    Shape-check item dicts. Returns [{product_id, quantity, product_name?, unit_price_cents?}].
    """
    if not isinstance(raw_items, list) or not raw_items:
        errs.add(field, f"{field} must be a non-empty list")
        return []

    items = []
    for idx, raw in enumerate(raw_items):
        prefix = f"{field}[{idx}]"
        if not isinstance(raw, dict):
            errs.add(prefix, "item must be an object")
            continue
        before = len(errs.errors)
        product_id = errs.integer(raw, "product_id", minimum=1)
        quantity = errs.integer(raw, "quantity", minimum=1)
        unit_price = errs.integer(raw, "unit_price_cents", required=False, minimum=0)
        name = errs.string(raw, "product_name", required=False, max_length=255)
        # Re-label this item's errors with its position
        for err in errs.errors[before:]:
            err["field"] = f"{prefix}.{err['field']}"
        if len(errs.errors) == before:
            items.append({
                "product_id": product_id,
                "quantity": quantity,
                "unit_price_cents": unit_price,
                "product_name": name,
            })
    return items


def _load_products(items: list[dict]) -> dict[int, Product]:
    ids = sorted({item["product_id"] for item in items})
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}
    missing = [pid for pid in ids if pid not in products]
    if missing:
        raise ValidationError(
            "Unknown product",
            [{"field": "items", "message": f"product {pid} not found"} for pid in missing],
        )
    return products


def _parse_discount(payload: dict, errs: FieldErrors) -> tuple[str, Decimal]:
    discount_type = errs.choice(payload, "discount_type", DISCOUNT_TYPES, default=DISCOUNT_AMOUNT)
    raw = payload.get("discount_value")
    if raw is None:
        return discount_type or DISCOUNT_AMOUNT, Decimal(0)

    try:
        if discount_type == DISCOUNT_PERCENTAGE:
            value = parse_decimal(raw, "discount_value").quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            if value < 0 or value > 100:
                errs.add("discount_value", "discount_value must be between 0 and 100")
        else:
            # Amount discounts are whole cents
            value = Decimal(parse_strict_int(raw, "discount_value"))
            if value < 0:
                errs.add("discount_value", "discount_value must be >= 0")
    except ValidationError as exc:
        errs.add("discount_value", exc.message)
        value = Decimal(0)
    return discount_type or DISCOUNT_AMOUNT, value


# =============================================================================
# Shared helpers
# =============================================================================

def _enqueue_safe(invoice: SalesInvoice, tx_type: str, amount_cents: int, reference_type: str,
                  user_id: int | None, description: str) -> None:
    if not invoice.safe_id or invoice.is_credit or amount_cents <= 0:
        return
    outbox_service.enqueue_safe_post(
        safe_id=invoice.safe_id,
        type=tx_type,
        amount_usd_cents=0,
        amount_lyd_cents=amount_cents,
        description=description,
        reference_type=reference_type,
        reference_id=str(invoice.id),
        created_by_user_id=user_id,
    )


def _audit(operation: str, invoice_id: int, user_id: int | None, **extra) -> None:
    outbox_service.enqueue_audit(
        operation=operation,
        invoice_id=invoice_id,
        created_by_user_id=user_id,
        **extra,
    )


def _quantities(invoice: SalesInvoice) -> dict[int, int]:
    return inventory_service.aggregate_quantities(
        (item.product_id, item.quantity) for item in invoice.items
    )


def _load_for_change(invoice_id: int, user) -> SalesInvoice:
    invoice = lock_for_update(db.session.query(SalesInvoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise InvoiceNotFoundError("Invoice not found")
    _check_access(invoice, user)
    return invoice


def _check_access(invoice: SalesInvoice, user) -> None:
    if user.is_owner or invoice.created_by_user_id == user.id:
        return
    raise InvoiceForbiddenError("Only the invoice author or an owner can access this invoice")


# =============================================================================
# Create
# =============================================================================

def create_invoice(payload: dict, user) -> SalesInvoice:
    """
    Create an invoice and take its stock, all or nothing.

    payload: customer_name, branch, items[], discount_type?, discount_value?,
    service_amount_cents?, safe_id?, payment_type?
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errs = FieldErrors()
    customer_name = errs.string(payload, "customer_name", max_length=255)
    branch = validate_branch(payload.get("branch"), inventory_service.branches(), errs)
    items = _parse_items(payload.get("items"), errs)
    discount_type, discount_value = _parse_discount(payload, errs)
    service = errs.integer(payload, "service_amount_cents", required=False, minimum=0) or 0
    safe_id = errs.integer(payload, "safe_id", required=False, minimum=1)
    payment_type = errs.choice(payload, "payment_type", PAYMENT_TYPES, default=PAYMENT_CASH)
    errs.raise_if_any()

    def _op():
        products = _load_products(items)
        if safe_id is not None:
            safe_service.require_active_safe(safe_id)

        needed = inventory_service.aggregate_quantities(
            (item["product_id"], item["quantity"]) for item in items
        )
        inventory_service.check_availability(branch, needed)
        for product_id in sorted(needed):
            inventory_service.decrement(product_id, branch, needed[product_id])

        invoice = SalesInvoice(
            invoice_number=next_document_number(document_type=DOCUMENT_TYPE, prefix=DOCUMENT_PREFIX),
            customer_name=customer_name,
            branch=branch,
            payment_type=payment_type,
            discount_type=discount_type,
            discount_value=discount_value,
            service_amount_cents=service,
            safe_id=safe_id,
            created_by_user_id=user.id,
        )
        for item in items:
            product = products[item["product_id"]]
            price = item["unit_price_cents"]
            if price is None:
                price = product.price_cents
            invoice.items.append(InvoiceItem(
                product_id=product.id,
                product_name=item["product_name"] or product.name,
                quantity=item["quantity"],
                unit_price_cents=price,
                line_total_cents=item["quantity"] * price,
            ))

        _apply_totals(invoice)
        db.session.add(invoice)
        db.session.flush()

        _enqueue_safe(invoice, safe_service.TX_DEPOSIT, invoice.total_amount_cents, "invoice",
                      user.id, f"Sales invoice {invoice.invoice_number}")
        for item in invoice.items:
            _audit("invoice_create_item", invoice.id, user.id,
                   product_id=item.product_id, quantity=item.quantity,
                   details={"branch": branch, "unit_price_cents": item.unit_price_cents})
        _audit("invoice_create", invoice.id, user.id,
               details={"invoice_number": invoice.invoice_number,
                        "total_amount_cents": invoice.total_amount_cents,
                        "payment_type": payment_type})

        db.session.commit()
        current_app.logger.info(
            "Created invoice %s (%s, total %s cents) by user %s",
            invoice.invoice_number, branch, invoice.total_amount_cents, user.id,
        )
        return invoice

    return run_atomic(_op)


# =============================================================================
# Edit
# =============================================================================

def _parse_edit(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    errs = FieldErrors()
    changes: dict = {}
    if "customer_name" in payload:
        changes["customer_name"] = errs.string(payload, "customer_name", max_length=255)
    if "branch" in payload:
        changes["branch"] = validate_branch(payload.get("branch"), inventory_service.branches(), errs)
    if "items" in payload:
        items = _parse_items(payload.get("items"), errs)
        seen = set()
        for item in items:
            if item["product_id"] in seen:
                errs.add("items", f"product {item['product_id']} listed more than once")
            seen.add(item["product_id"])
        changes["items"] = items
    errs.raise_if_any()
    return changes


def _rebuild_items(invoice: SalesInvoice, new_items: list[dict]) -> None:
    """
    Replace the invoice lines with new_items, matching by product_id.
    Kept lines keep their price/name snapshots unless new ones are given.

    A product sold on several lines collapses into its first line; the
    other lines are removed.
    """
    products = _load_products(new_items)
    wanted = {item["product_id"] for item in new_items}

    existing: dict[int, InvoiceItem] = {}
    for line in list(invoice.items):
        if line.product_id not in wanted or line.product_id in existing:
            invoice.items.remove(line)
        else:
            existing[line.product_id] = line

    for item in new_items:
        line = existing.get(item["product_id"])
        if line is None:
            product = products[item["product_id"]]
            price = item["unit_price_cents"]
            if price is None:
                price = product.price_cents
            line = InvoiceItem(
                product_id=product.id,
                product_name=item["product_name"] or product.name,
                unit_price_cents=price,
            )
            invoice.items.append(line)
        else:
            if item["unit_price_cents"] is not None:
                line.unit_price_cents = item["unit_price_cents"]
            if item["product_name"]:
                line.product_name = item["product_name"]
        line.quantity = item["quantity"]
        line.line_total_cents = line.quantity * line.unit_price_cents


def edit_invoice(invoice_id: int, payload: dict, user) -> SalesInvoice:
    """
    Change customer, branch and/or items of an invoice.

    Stock: same branch applies per-product deltas; a branch switch gives
    every old quantity back to the old branch and takes every new quantity
    from the new branch. Totals are recomputed with the stored discount and
    service inputs.
    """
    changes = _parse_edit(payload)

    def _op():
        invoice = _load_for_change(invoice_id, user)

        old_total = invoice.total_amount_cents
        old_branch = invoice.branch
        new_branch = changes.get("branch") or old_branch
        old_qty = _quantities(invoice)

        if "customer_name" in changes:
            invoice.customer_name = changes["customer_name"]
        if "items" in changes:
            _rebuild_items(invoice, changes["items"])
        new_qty = _quantities(invoice)

        if new_branch == old_branch:
            deltas = {
                pid: new_qty.get(pid, 0) - old_qty.get(pid, 0)
                for pid in set(old_qty) | set(new_qty)
            }
            inventory_service.apply_deltas(old_branch, {p: d for p, d in deltas.items() if d})
        else:
            for product_id in sorted(old_qty):
                inventory_service.restore(product_id, old_branch, old_qty[product_id])
            inventory_service.apply_deltas(new_branch, new_qty)
            invoice.branch = new_branch

        _apply_totals(invoice)
        db.session.flush()

        diff = invoice.total_amount_cents - old_total
        if abs(diff) > EDIT_EPSILON_CENTS:
            if diff > 0:
                _enqueue_safe(invoice, safe_service.TX_DEPOSIT, diff, "invoice_edit_add",
                              user.id, f"Invoice {invoice.invoice_number} edited (+)")
            else:
                _enqueue_safe(invoice, safe_service.TX_WITHDRAWAL, -diff, "invoice_edit_return",
                              user.id, f"Invoice {invoice.invoice_number} edited (-)")

        _audit("invoice_edit", invoice.id, user.id,
               details={"old_total_cents": old_total,
                        "new_total_cents": invoice.total_amount_cents,
                        "old_branch": old_branch,
                        "new_branch": new_branch})

        db.session.commit()
        return invoice

    return run_atomic(_op)


# =============================================================================
# Delete
# =============================================================================

def delete_invoice(invoice_id: int, user) -> dict:
    """Delete an invoice, giving all of its stock back to its branch."""
    def _op():
        invoice = _load_for_change(invoice_id, user)

        if invoice.is_credit and credit_paid_cents(invoice.id) > 0:
            raise InvoiceError("Cannot delete a credit invoice that has recorded payments")

        for product_id, quantity in sorted(_quantities(invoice).items()):
            inventory_service.restore(product_id, invoice.branch, quantity)

        summary = {
            "deleted": True,
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
        }
        _enqueue_safe(invoice, safe_service.TX_WITHDRAWAL, invoice.total_amount_cents, "invoice_delete",
                      user.id, f"Invoice {invoice.invoice_number} deleted")
        _audit("invoice_delete", invoice.id, user.id,
               details={"invoice_number": invoice.invoice_number,
                        "total_amount_cents": invoice.total_amount_cents,
                        "branch": invoice.branch})

        db.session.delete(invoice)
        db.session.commit()
        return summary

    return run_atomic(_op)


# =============================================================================
# Return
# =============================================================================

def _parse_return(payload: dict) -> dict[int, int]:
    """Returns {item_id: total quantity} with repeated item ids summed."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_items = payload.get("return_items")
    errs = FieldErrors()
    if not isinstance(raw_items, list) or not raw_items:
        errs.add("return_items", "return_items must be a non-empty list")
        errs.raise_if_any()

    wanted: dict[int, int] = {}
    for idx, raw in enumerate(raw_items):
        prefix = f"return_items[{idx}]"
        if not isinstance(raw, dict):
            errs.add(prefix, "item must be an object")
            continue
        before = len(errs.errors)
        item_id = errs.integer(raw, "item_id", minimum=1)
        quantity = errs.integer(raw, "quantity", minimum=1)
        for err in errs.errors[before:]:
            err["field"] = f"{prefix}.{err['field']}"
        if len(errs.errors) == before:
            wanted[item_id] = wanted.get(item_id, 0) + quantity
    errs.raise_if_any()
    return wanted


def return_items(invoice_id: int, payload: dict, user) -> ReturnResult:
    """
    Take back some or all of the goods on an invoice.

    Refund = old total - new total. A full return deletes the invoice and
    refunds the full former total. On a partial return percentage discounts
    are re-applied, amount discounts shrink in proportion to the remaining
    subtotal, and the service amount is kept.
    """
    wanted = _parse_return(payload)

    def _op():
        invoice = _load_for_change(invoice_id, user)
        lines = {item.id: item for item in invoice.items}

        errs = FieldErrors()
        for item_id, quantity in wanted.items():
            line = lines.get(item_id)
            if line is None:
                errs.add("return_items", f"item {item_id} does not belong to this invoice")
            elif quantity > line.quantity:
                errs.add(
                    "return_items",
                    f"item {item_id}: cannot return {quantity}, only {line.quantity} sold",
                )
        errs.raise_if_any("Invalid return")

        old_total = invoice.total_amount_cents
        old_subtotal = invoice.subtotal_cents
        old_discount = invoice.discount_amount_cents
        branch = invoice.branch

        gross_return = 0
        restored: dict[int, int] = {}
        for item_id in sorted(wanted):
            line = lines[item_id]
            quantity = wanted[item_id]
            gross_return += quantity * line.unit_price_cents
            restored[line.product_id] = restored.get(line.product_id, 0) + quantity
            _audit("invoice_return_item", invoice.id, user.id,
                   product_id=line.product_id, quantity=quantity,
                   details={"item_id": item_id, "unit_price_cents": line.unit_price_cents})
            line.quantity -= quantity
            if line.quantity == 0:
                invoice.items.remove(line)
            else:
                line.line_total_cents = line.quantity * line.unit_price_cents

        for product_id in sorted(restored):
            inventory_service.restore(product_id, branch, restored[product_id])

        if not invoice.items:
            if invoice.is_credit and credit_paid_cents(invoice.id) > 0:
                raise InvoiceError("Cannot fully return a credit invoice that has recorded payments")
            result = ReturnResult(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                refund_amount_cents=old_total,
                deleted=True,
            )
            _enqueue_safe(invoice, safe_service.TX_WITHDRAWAL, old_total, "invoice_return",
                          user.id, f"Invoice {invoice.invoice_number} fully returned")
            _audit("invoice_return_full", invoice.id, user.id,
                   details={"invoice_number": invoice.invoice_number,
                            "gross_return_cents": gross_return,
                            "refund_amount_cents": old_total})
            db.session.delete(invoice)
            db.session.commit()
            return result

        new_subtotal = old_subtotal - gross_return
        if invoice.discount_type == DISCOUNT_PERCENTAGE:
            discount = compute_discount(new_subtotal, invoice.discount_type, invoice.discount_value)
        else:
            discount = 0
            if old_subtotal > 0:
                discount = round_half_up(Decimal(old_discount) * new_subtotal / old_subtotal)
            discount = min(discount, new_subtotal)
            invoice.discount_value = Decimal(discount)
        _set_totals(invoice, new_subtotal, discount)
        db.session.flush()

        refund = max(old_total - invoice.total_amount_cents, 0)
        _enqueue_safe(invoice, safe_service.TX_WITHDRAWAL, refund, "invoice_return",
                      user.id, f"Invoice {invoice.invoice_number} partial return")

        db.session.commit()
        return ReturnResult(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            refund_amount_cents=refund,
            deleted=False,
            invoice=invoice,
        )

    return run_atomic(_op)


# =============================================================================
# Reads
# =============================================================================

def _visible_query(user):
    query = db.session.query(SalesInvoice)
    if not user.is_owner:
        query = query.filter(SalesInvoice.created_by_user_id == user.id)
    return query


def list_invoices(
    user,
    branch: str | None = None,
    payment_status: str | None = None,
    payment_type: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Owners see every invoice; everybody else sees the invoices they wrote.
    """
    query = _visible_query(user)
    if branch:
        query = query.filter(SalesInvoice.branch == branch)
    if payment_status:
        query = query.filter(SalesInvoice.payment_status == payment_status)
    if payment_type:
        query = query.filter(SalesInvoice.payment_type == payment_type)
    query = query.order_by(SalesInvoice.id.desc())

    if page is None:
        invoices = query.all()
        return {
            "items": [inv.to_dict() for inv in invoices],
            "count": len(invoices),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    invoices = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [inv.to_dict() for inv in invoices],
        "count": len(invoices),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_invoice(invoice_id: int, user) -> SalesInvoice:
    invoice = db.session.get(SalesInvoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFoundError("Invoice not found")
    _check_access(invoice, user)
    return invoice


def _metrics_row(query) -> dict:
    count, total_sales = query.with_entities(
        func.count(SalesInvoice.id),
        func.coalesce(func.sum(SalesInvoice.total_amount_cents), 0),
    ).one()
    total_items = (
        query.join(InvoiceItem, InvoiceItem.invoice_id == SalesInvoice.id)
        .with_entities(func.coalesce(func.sum(InvoiceItem.quantity), 0))
        .scalar()
    )
    count = int(count or 0)
    total_sales = int(total_sales or 0)
    return {
        "invoice_count": count,
        "total_sales_cents": total_sales,
        "total_items": int(total_items or 0),
        "average_order_value_cents": round_half_up(Decimal(total_sales) / count) if count else 0,
    }


def invoice_metrics(user, branch: str | None = None) -> dict:
    """Sales totals for the caller's visible invoices, overall and per branch."""
    base = _visible_query(user)
    if branch:
        base = base.filter(SalesInvoice.branch == branch)

    data = _metrics_row(base)
    data["by_branch"] = {
        name: _metrics_row(base.filter(SalesInvoice.branch == name))
        for name in inventory_service.branches()
        if not branch or name == branch
    }
    return data
