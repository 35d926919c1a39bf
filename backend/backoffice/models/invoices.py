from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from backoffice.time_utils import to_utc_z


def _decimal_to_json(value: Decimal | None):
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


class SalesInvoice(db.Model):
    """
    Sales invoice document.

    Totals are stored, not derived on read, because items are snapshots and
    the discount/service inputs are kept alongside them:
        total = max(subtotal - discount_amount + service_amount, 0)

    Payment state:
    - cash sales are PAID on creation (paid = total, remaining = 0)
    - credit sales start UNPAID and move through PARTIALLY_PAID to PAID as
      CreditPayment rows are appended
    """
    __tablename__ = "sales_invoices"
    __table_args__ = (
        db.Index("ix_sales_invoices_branch_created", "branch", "created_at"),
        db.Index("ix_sales_invoices_payment", "payment_type", "payment_status"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_invoices_total_nonneg"),
        db.CheckConstraint("remaining_amount_cents >= 0", name="ck_sales_invoices_remaining_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "INV-000123")
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    customer_name = db.Column(db.String(255), nullable=False)
    branch = db.Column(db.String(32), nullable=False, index=True)

    payment_type = db.Column(db.String(16), nullable=False, default="cash")

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="amount")
    # cents for "amount", percent for "percentage"
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    service_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="paid", index=True)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_credit(self) -> bool:
        return self.payment_type == "credit"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "branch": self.branch,
            "payment_type": self.payment_type,
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": _decimal_to_json(self.discount_value),
            "discount_amount_cents": self.discount_amount_cents,
            "service_amount_cents": self.service_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_status": self.payment_status,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "safe_id": self.safe_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Invoice line. product_name and unit_price_cents are snapshots taken at
    sale time and never follow later product edits.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("sales_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class CreditPayment(db.Model):
    """Append-only payment against a credit invoice."""
    __tablename__ = "credit_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_credit_payments_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("sales_invoices.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("SalesInvoice", backref=db.backref("credit_payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "safe_id": self.safe_id,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
