from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data (auto parts).

    price_cents is the default sell price offered when an invoice line does
    not name one. cost_price_cents may be NULL when the cost is unknown.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        db.CheckConstraint(
            "cost_price_cents IS NULL OR cost_price_cents >= 0",
            name="ck_products_cost_nonneg",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True, index=True)
    category = db.Column(db.String(128), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    inventory = db.relationship(
        "BranchInventory",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_cost: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "description": self.description,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "inventory": [row.to_dict() for row in self.inventory],
        }
        if include_cost:
            data["cost_price_cents"] = self.cost_price_cents
        return data


class BranchInventory(db.Model):
    """
    Per-(product, branch) stock counter.

    Quantity is mutated only through inventory_service so that every
    decrement is a single conditional UPDATE; the check constraint is the
    last line against a negative count.
    """
    __tablename__ = "branch_inventory"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch", name="uq_branch_inventory_product_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_branch_inventory_quantity_nonneg"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_branch_inventory_threshold_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch": self.branch,
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "updated_at": to_utc_z(self.updated_at),
        }
