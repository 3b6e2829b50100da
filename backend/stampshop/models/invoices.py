from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Invoice(db.Model):
    """
    Sales invoice generated on demand from an active order (one per order).

    VAT is recomputed at the fixed invoice rate, independent of the order's own
    vat_rate. Shipping is not invoiced.
    """
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # "HD000001"
    invoice_code = db.Column(db.String(32), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    order_code = db.Column(db.String(32), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=False)
    customer_phone = db.Column(db.String(11), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)
    customer_tax_code = db.Column(db.String(13), nullable=True)
    agent_name = db.Column(db.String(100), nullable=True)
    employee_name = db.Column(db.String(100), nullable=False)

    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    subtotal = db.Column(db.Float, nullable=False)
    vat = db.Column(db.Float, nullable=False, default=0)
    shipping_fee = db.Column(db.Float, nullable=False, default=0)
    total_amount = db.Column(db.Float, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    is_printed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_code": self.invoice_code,
            "order_id": self.order_id,
            "order_code": self.order_code,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "customer_tax_code": self.customer_tax_code,
            "agent_name": self.agent_name,
            "employee_name": self.employee_name,
            "invoice_date": to_utc_z(self.invoice_date),
            "subtotal": self.subtotal,
            "vat": self.vat,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "is_printed": self.is_printed,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "printed_by": self.printed_by,
            "created_at": to_utc_z(self.created_at),
        }
