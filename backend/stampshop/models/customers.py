from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# system_key values for the built-in walk-in pair
DEFAULT_AGENT_KEY = "default_agent"
DEFAULT_CUSTOMER_KEY = "default_customer"


class Agent(db.Model):
    """Resale partner. Customers are attached to exactly one agent."""
    __tablename__ = "agents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False, index=True)
    phone = db.Column(db.String(11), nullable=False)
    address = db.Column(db.String(500), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    commission_rate = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Set only on built-in rows; unique so concurrent bootstraps cannot duplicate them
    system_key = db.Column(db.String(32), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
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
            "phone": self.phone,
            "address": self.address,
            "email": self.email,
            "commission_rate": self.commission_rate,
            "notes": self.notes,
            "is_active": self.is_active,
            "is_default": self.system_key == DEFAULT_AGENT_KEY,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(db.Model):
    """
    Customer contact record.

    agent_name is a snapshot of the agent's name taken when the customer is
    created or moved to another agent. Renaming the agent does not touch it.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False, index=True)
    phone = db.Column(db.String(11), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    tax_code = db.Column(db.String(13), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=False, index=True)
    agent_name = db.Column(db.String(100), nullable=False)

    notes = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    system_key = db.Column(db.String(32), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    agent = db.relationship("Agent", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "tax_code": self.tax_code,
            "email": self.email,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "notes": self.notes,
            "is_active": self.is_active,
            "is_default": self.system_key == DEFAULT_CUSTOMER_KEY,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
