# Overview: Service-layer operations for credit sales; payments against invoices and supplier debts.

from __future__ import annotations

from sqlalchemy import func

from ..errors import ServiceError
from ..extensions import db
from ..models import CreditPayment, SalesInvoice, Supplier
from ..validation import FieldErrors, ValidationError
from . import outbox_service, safe_service
from .concurrency import lock_for_update, run_atomic
from .invoice_service import (
    PAYMENT_CREDIT,
    PAYMENT_STATUSES,
    STATUS_PAID,
    STATUS_PARTIALLY_PAID,
    STATUS_UNPAID,
    credit_paid_cents,
    payment_status_for,
)


PAYMENT_METHODS = ("cash", "bank_transfer", "card", "other")


class CreditError(ServiceError):
    """Raised for credit payment errors."""
    pass


def record_payment(payload: dict, user) -> CreditPayment:
    """
    Append a payment to a credit invoice and recompute its balance.

    payload: invoice_id, amount_cents, payment_method?, safe_id?, description?

    The safe deposit (if a safe is named) goes through the outbox like the
    invoice-side postings.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    invoice_id = errs.integer(payload, "invoice_id", minimum=1)
    amount = errs.integer(payload, "amount_cents", minimum=1)
    method = errs.choice(payload, "payment_method", PAYMENT_METHODS, default="cash")
    safe_id = errs.integer(payload, "safe_id", required=False, minimum=1)
    description = errs.string(payload, "description", required=False, max_length=255)
    errs.raise_if_any()

    def _op():
        invoice = lock_for_update(db.session.query(SalesInvoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise CreditError("Invoice not found", status_code=404)
        if invoice.payment_type != PAYMENT_CREDIT:
            raise CreditError("Payments can only be recorded against credit invoices")
        if safe_id is not None:
            safe_service.require_active_safe(safe_id)

        paid = credit_paid_cents(invoice.id)
        remaining = invoice.total_amount_cents - paid
        if amount > remaining:
            raise CreditError(
                "Payment exceeds the remaining amount",
                details={"remaining_amount_cents": remaining, "amount_cents": amount},
            )

        payment = CreditPayment(
            invoice_id=invoice.id,
            amount_cents=amount,
            payment_method=method,
            safe_id=safe_id,
            description=description,
            created_by_user_id=user.id,
        )
        db.session.add(payment)

        paid += amount
        invoice.paid_amount_cents = paid
        invoice.remaining_amount_cents = invoice.total_amount_cents - paid
        invoice.payment_status = payment_status_for(invoice.total_amount_cents, paid)
        db.session.flush()

        if safe_id is not None:
            outbox_service.enqueue_safe_post(
                safe_id=safe_id,
                type=safe_service.TX_DEPOSIT,
                amount_usd_cents=0,
                amount_lyd_cents=amount,
                description=description or f"Credit payment for {invoice.invoice_number}",
                reference_type="credit_payment",
                reference_id=str(payment.id),
                created_by_user_id=user.id,
            )
        outbox_service.enqueue_audit(
            operation="credit_payment",
            invoice_id=invoice.id,
            created_by_user_id=user.id,
            details={"payment_id": payment.id, "amount_cents": amount,
                     "remaining_amount_cents": invoice.remaining_amount_cents},
        )

        db.session.commit()
        return payment

    return run_atomic(_op)


def list_payments(invoice_id: int) -> list[CreditPayment]:
    if db.session.get(SalesInvoice, invoice_id) is None:
        raise CreditError("Invoice not found", status_code=404)
    return (
        db.session.query(CreditPayment)
        .filter_by(invoice_id=invoice_id)
        .order_by(CreditPayment.id.asc())
        .all()
    )


def list_credit_invoices(status: str | None = None) -> list[SalesInvoice]:
    query = db.session.query(SalesInvoice).filter(SalesInvoice.payment_type == PAYMENT_CREDIT)
    if status:
        if status not in PAYMENT_STATUSES:
            errs = FieldErrors()
            errs.add("status", f"status must be one of: {', '.join(PAYMENT_STATUSES)}")
            errs.raise_if_any()
        query = query.filter(SalesInvoice.payment_status == status)
    return query.order_by(SalesInvoice.id.desc()).all()


def credit_summary() -> dict:
    """Credit sales totals, per-status counts and the total owed to suppliers."""
    base = db.session.query(SalesInvoice).filter(SalesInvoice.payment_type == PAYMENT_CREDIT)
    count, total, paid, outstanding = base.with_entities(
        func.count(SalesInvoice.id),
        func.coalesce(func.sum(SalesInvoice.total_amount_cents), 0),
        func.coalesce(func.sum(SalesInvoice.paid_amount_cents), 0),
        func.coalesce(func.sum(SalesInvoice.remaining_amount_cents), 0),
    ).one()

    by_status = {status: {"count": 0, "remaining_amount_cents": 0}
                 for status in (STATUS_UNPAID, STATUS_PARTIALLY_PAID, STATUS_PAID)}
    rows = (
        base.with_entities(
            SalesInvoice.payment_status,
            func.count(SalesInvoice.id),
            func.coalesce(func.sum(SalesInvoice.remaining_amount_cents), 0),
        )
        .group_by(SalesInvoice.payment_status)
        .all()
    )
    for status, status_count, status_remaining in rows:
        by_status[status] = {
            "count": int(status_count),
            "remaining_amount_cents": int(status_remaining),
        }

    supplier_debt = (
        db.session.query(func.coalesce(func.sum(Supplier.balance_owed_cents), 0)).scalar()
    )

    return {
        "credit_invoice_count": int(count or 0),
        "total_credit_sales_cents": int(total or 0),
        "total_paid_cents": int(paid or 0),
        "total_outstanding_cents": int(outstanding or 0),
        "by_status": by_status,
        "total_supplier_debt_cents": int(supplier_debt or 0),
    }


def supplier_debts() -> list[Supplier]:
    return (
        db.session.query(Supplier)
        .filter(Supplier.balance_owed_cents > 0)
        .order_by(Supplier.balance_owed_cents.desc(), Supplier.name.asc())
        .all()
    )


def pay_supplier(payload: dict, user) -> Supplier:
    """
    Reduce what we owe a supplier; optionally pay it out of a safe.

    The safe withdrawal is part of this transaction: unlike the sale path,
    the payment itself is the money movement.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    errs = FieldErrors()
    supplier_id = errs.integer(payload, "supplier_id", minimum=1)
    amount = errs.integer(payload, "amount_cents", minimum=1)
    safe_id = errs.integer(payload, "safe_id", required=False, minimum=1)
    description = errs.string(payload, "description", required=False, max_length=255)
    errs.raise_if_any()

    def _op():
        supplier = lock_for_update(db.session.query(Supplier).filter_by(id=supplier_id)).first()
        if supplier is None:
            raise CreditError("Supplier not found", status_code=404)
        if amount > supplier.balance_owed_cents:
            raise CreditError(
                "Payment exceeds the balance owed to the supplier",
                details={"balance_owed_cents": supplier.balance_owed_cents, "amount_cents": amount},
            )

        supplier.balance_owed_cents -= amount
        if safe_id is not None:
            safe_service.post_transaction(
                safe_id=safe_id,
                type=safe_service.TX_WITHDRAWAL,
                amount_usd_cents=amount if supplier.currency == "USD" else 0,
                amount_lyd_cents=amount if supplier.currency != "USD" else 0,
                description=description or f"Payment to supplier {supplier.name}",
                reference_type="supplier_payment",
                reference_id=str(supplier.id),
                created_by_user_id=user.id,
            )

        db.session.commit()
        return supplier

    return run_atomic(_op)
