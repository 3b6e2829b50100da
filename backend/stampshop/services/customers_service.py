# Overview: Customer records, the built-in walk-in customer, and customer growth stats.

from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Order
from ..models.customers import DEFAULT_CUSTOMER_KEY
from ..time_utils import now_in_vietnam, vietnam_month_bounds
from ..validation import Page
from .agents_service import ensure_default_agent, get_agent
from .listing import paginated

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER_NAME = "Khách lẻ"

CUSTOMER_MUTABLE_FIELDS = {"name", "phone", "address", "tax_code", "email", "notes", "is_active"}


def percentage_change(current: float, previous: float) -> float:
    """(cur - prev) / prev * 100 rounded to 2 places; 100 when prev is 0 and cur is not."""
    if previous == 0:
        return 100.0 if current != 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def _search_filter(keyword: str):
    pattern = f"%{keyword}%"
    return or_(
        Customer.name.ilike(pattern),
        Customer.phone.ilike(pattern),
        Customer.email.ilike(pattern),
        Customer.agent_name.ilike(pattern),
    )


def list_customers(*, search: str | None, page: Page) -> dict:
    """Customers with their active-order count and total."""
    totals = (
        db.session.query(
            Order.customer_id.label("customer_id"),
            func.count(Order.id).label("total_orders"),
            func.sum(Order.total_amount).label("total_amount"),
        )
        .filter(Order.status == "active")
        .group_by(Order.customer_id)
        .subquery()
    )
    query = (
        db.session.query(Customer, totals.c.total_orders, totals.c.total_amount)
        .outerjoin(totals, totals.c.customer_id == Customer.id)
    )
    if search:
        query = query.filter(_search_filter(search))
    query = query.order_by(Customer.created_at.desc(), Customer.id.desc())

    total = query.count()
    rows = query.offset(page.offset).limit(page.limit).all()
    items = []
    for customer, orders, amount in rows:
        data = customer.to_dict()
        data["total_orders"] = int(orders or 0)
        data["total_amount"] = float(amount or 0)
        items.append(data)
    return paginated(items, total, page)


def search_customers(keyword: str) -> list[Customer]:
    return db.session.query(Customer).filter(_search_filter(keyword)).order_by(Customer.name.asc()).all()


def customers_by_agent(agent_id: int) -> list[Customer]:
    get_agent(agent_id)
    return (
        db.session.query(Customer)
        .filter(Customer.agent_id == agent_id)
        .order_by(Customer.name.asc())
        .all()
    )


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return customer


def create_customer(*, patch: dict, agent_id: int | None, commit: bool = True) -> Customer:
    """Attach to `agent_id`, or the built-in retail agent when none is given."""
    agent = get_agent(agent_id) if agent_id is not None else ensure_default_agent()
    if not patch.get("name"):
        raise ValidationError("name is required")

    customer = Customer(
        agent_id=agent.id,
        agent_name=agent.name,
        **{k: v for k, v in patch.items() if k in CUSTOMER_MUTABLE_FIELDS},
    )
    db.session.add(customer)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return customer


def update_customer(*, customer_id: int, patch: dict, agent_id: int | None = None) -> Customer:
    customer = get_customer(customer_id)
    if agent_id is not None and agent_id != customer.agent_id:
        agent = get_agent(agent_id)
        customer.agent_id = agent.id
        customer.agent_name = agent.name

    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.commit()
    return customer


def delete_customer(*, customer_id: int) -> None:
    customer = get_customer(customer_id)
    if customer.system_key:
        raise ConflictError("The built-in walk-in customer cannot be deleted", {"customer_id": customer.id})
    orders = db.session.query(func.count(Order.id)).filter(Order.customer_id == customer.id).scalar()
    if orders:
        raise ConflictError(
            f"Customer {customer.name!r} has {orders} orders",
            {"customer_id": customer.id, "orders": orders},
        )
    db.session.delete(customer)
    db.session.commit()


def ensure_default_customer() -> Customer:
    """Return the built-in "Khách lẻ" customer tied to the built-in agent, creating both if missing."""
    customer = db.session.query(Customer).filter_by(system_key=DEFAULT_CUSTOMER_KEY).first()
    if customer is not None:
        return customer

    agent = ensure_default_agent()
    try:
        with db.session.begin_nested():
            customer = Customer(
                name=DEFAULT_CUSTOMER_NAME,
                agent_id=agent.id,
                agent_name=agent.name,
                notes="Khách hàng mặc định",
                system_key=DEFAULT_CUSTOMER_KEY,
            )
            db.session.add(customer)
        logger.info("Created default customer id=%s", customer.id)
        return customer
    except IntegrityError:
        return db.session.query(Customer).filter_by(system_key=DEFAULT_CUSTOMER_KEY).one()


def customer_stats() -> dict:
    """New customers this Vietnam calendar month vs the previous one."""
    today = now_in_vietnam()
    cur_start, cur_end = vietnam_month_bounds(today.year, today.month)
    if today.month == 1:
        prev_start, prev_end = vietnam_month_bounds(today.year - 1, 12)
    else:
        prev_start, prev_end = vietnam_month_bounds(today.year, today.month - 1)

    def _count(start, end) -> int:
        return (
            db.session.query(func.count(Customer.id))
            .filter(Customer.created_at >= start, Customer.created_at < end)
            .scalar()
            or 0
        )

    current = _count(cur_start, cur_end)
    previous = _count(prev_start, prev_end)
    change = percentage_change(current, previous)
    return {
        "total_customers": db.session.query(func.count(Customer.id)).scalar() or 0,
        "current_month_customers": current,
        "previous_month_customers": previous,
        "customers_change": change,
        "customers_change_formatted": f"{'+' if change >= 0 else ''}{change}%",
    }
