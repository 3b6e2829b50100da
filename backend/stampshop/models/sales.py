from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Customer order.

    Lifecycle: active -> cancelled (terminal), or active/cancelled -> deleted.
    Line items are snapshots (name, unit price) taken at write time; later
    product edits never change historical orders. Customer and agent names are
    snapshotted the same way.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.Index("ix_orders_agent_status", "agent_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # "DH000123", allocated from document_sequences
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=True)
    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(11), nullable=True)
    agent_name = db.Column(db.String(100), nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0)
    vat_rate = db.Column(db.Float, nullable=False, default=0)
    vat_amount = db.Column(db.Float, nullable=False, default=0)
    shipping_fee = db.Column(db.Float, nullable=False, default=0)
    total_amount = db.Column(db.Float, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    paid_amount = db.Column(db.Float, nullable=False, default=0)
    debt_amount = db.Column(db.Float, nullable=False, default=0)

    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_address = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.String(1000), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy="dynamic"))
    agent = db.relationship("Agent", backref=db.backref("orders", lazy="dynamic"))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    updated_by = db.relationship("User", foreign_keys=[updated_by_user_id])
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "agent_id": self.agent_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "agent_name": self.agent_name,
            "customer": {
                "id": self.customer.id,
                "name": self.customer.name,
                "phone": self.customer.phone,
                "address": self.customer.address,
            } if self.customer else None,
            "agent": {
                "id": self.agent.id,
                "name": self.agent.name,
                "phone": self.agent.phone,
            } if self.agent else None,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "vat_rate": self.vat_rate,
            "vat_amount": self.vat_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
            "payment_status": self.payment_status,
            "paid_amount": self.paid_amount,
            "debt_amount": self.debt_amount,
            "delivery_date": to_utc_z(self.delivery_date) if self.delivery_date else None,
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_by": {
                "id": self.created_by.id,
                "username": self.created_by.username,
                "full_name": self.created_by.full_name,
            } if self.created_by else None,
            "updated_by_user_id": self.updated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """Order line snapshot: total_price = quantity * unit_price."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    total_price = db.Column(db.Float, nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "notes": self.notes,
        }
