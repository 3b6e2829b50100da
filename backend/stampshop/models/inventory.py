from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Category(db.Model):
    """Product category. Names are unique ignoring case (enforced in categories_service)."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(500), nullable=True)
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
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data plus inventory state.

    stock_quantity and avg_import_price are written only by stock_service.
    Products are never physically deleted: orders and stock transactions keep
    referencing them after a soft delete (is_active=False).

    `code` is unique with exact, case-sensitive matching ("C20 XANH" != "c20 xanh").
    `category` holds the category name as a string; renames cascade from
    categories_service.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    avg_import_price = db.Column(db.Float, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)
    current_price = db.Column(db.Float, nullable=False, default=0)

    category = db.Column(db.String(100), nullable=True, index=True)
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Optimistic lock: concurrent stock writers get StaleDataError and are retried
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "stock_quantity": self.stock_quantity,
            "avg_import_price": self.avg_import_price,
            "min_stock": self.min_stock,
            "current_price": self.current_price,
            "category": self.category,
            "color": self.color,
            "size": self.size,
            "unit": self.unit,
            "notes": self.notes,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockTransaction(db.Model):
    """
    Append-only stock ledger.

    quantity is signed: exports are always negative, returns are recorded as
    imports with unit_price 0. stock_before/stock_after are point-in-time
    snapshots and never recomputed.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.Index("ix_stock_transactions_product_date", "product_id", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    # Snapshot at write time, survives product renames
    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False, default=0)
    total_value = db.Column(db.Float, nullable=False, default=0)

    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_name = db.Column(db.String(100), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_transactions", lazy="dynamic"))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "transaction_type": self.transaction_type,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_value": self.total_value,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user": {
                "id": self.user.id,
                "username": self.user.username,
                "full_name": self.user.full_name,
                "role": self.user.role,
            } if self.user else None,
            "reason": self.reason,
            "notes": self.notes,
            "transaction_date": to_utc_z(self.transaction_date),
        }
