from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Safe(db.Model):
    """
    Named cash register ("safe") holding USD and LYD.

    balance_* columns are a denormalized cache of SUM(safe_transactions);
    safe_service adjusts them in the same transaction as every append and
    can rebuild them from the ledger.
    """
    __tablename__ = "safes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)

    # Reporting hierarchy only
    parent_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)

    balance_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_lyd_cents = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    parent = db.relationship("Safe", remote_side=[id], backref=db.backref("children", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "parent_id": self.parent_id,
            "balance_usd_cents": self.balance_usd_cents,
            "balance_lyd_cents": self.balance_lyd_cents,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SafeTransaction(db.Model):
    """
    Append-only money movement on a safe.

    Amounts are stored unsigned; the sign comes from the type. Corrections
    are new offsetting rows, never edits.
    """
    __tablename__ = "safe_transactions"
    __table_args__ = (
        db.Index("ix_safe_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False)

    amount_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=True)

    description = db.Column(db.String(255), nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    safe = db.relationship("Safe", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "safe_id": self.safe_id,
            "type": self.type,
            "amount_usd_cents": self.amount_usd_cents,
            "amount_lyd_cents": self.amount_lyd_cents,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "description": self.description,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """Supplier with a running payable (balance_owed_cents)."""
    __tablename__ = "suppliers"
    __table_args__ = (
        db.CheckConstraint("balance_owed_cents >= 0", name="ck_suppliers_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)

    balance_owed_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="LYD")

    contact_name = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "balance_owed_cents": self.balance_owed_cents,
            "currency": self.currency,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "address": self.address,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockPurchase(db.Model):
    """Stock-in with its financial side (paid from a safe or owed to a supplier)."""
    __tablename__ = "stock_purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    branch = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    # paid_now | on_credit
    purchase_type = db.Column(db.String(16), nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="LYD")
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)
    supplier_invoice_number = db.Column(db.String(64), nullable=True)
    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)
    safe_transaction_id = db.Column(db.Integer, db.ForeignKey("safe_transactions.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "branch": self.branch,
            "quantity": self.quantity,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "total_cost_cents": self.total_cost_cents,
            "purchase_type": self.purchase_type,
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "supplier_id": self.supplier_id,
            "supplier_invoice_number": self.supplier_invoice_number,
            "safe_id": self.safe_id,
            "safe_transaction_id": self.safe_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountingEntry(db.Model):
    """Two-sided journal line: one debit account, one credit account, one amount."""
    __tablename__ = "accounting_entries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    entry_number = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    debit_account_type = db.Column(db.String(32), nullable=False)
    debit_account_id = db.Column(db.String(64), nullable=True)
    credit_account_type = db.Column(db.String(32), nullable=False)
    credit_account_id = db.Column(db.String(64), nullable=True)

    amount_usd_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_lyd_cents = db.Column(db.Integer, nullable=False, default=0)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_number": self.entry_number,
            "description": self.description,
            "debit_account_type": self.debit_account_type,
            "debit_account_id": self.debit_account_id,
            "credit_account_type": self.credit_account_type,
            "credit_account_id": self.credit_account_id,
            "amount_usd_cents": self.amount_usd_cents,
            "amount_lyd_cents": self.amount_lyd_cents,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Expense(db.Model):
    """
    Money paid out (or taken in) outside sales and purchases.

    When safe_id is set the movement is mirrored by safe_transaction_id;
    deleting the expense appends an offsetting safe transaction.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("expense_categories.id"), nullable=False, index=True)
    person_name = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="LYD")

    # outgoing | incoming
    direction = db.Column(db.String(16), nullable=False, default="outgoing")
    description = db.Column(db.String(255), nullable=True)

    safe_id = db.Column(db.Integer, db.ForeignKey("safes.id"), nullable=True)
    safe_transaction_id = db.Column(db.Integer, db.ForeignKey("safe_transactions.id"), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    category = db.relationship("ExpenseCategory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category_id": self.category_id,
            "category": self.category.name if self.category is not None else None,
            "person_name": self.person_name,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "direction": self.direction,
            "description": self.description,
            "safe_id": self.safe_id,
            "safe_transaction_id": self.safe_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
