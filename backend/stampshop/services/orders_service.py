# Overview: Order lifecycle; drives stock exports and compensating returns through stock_service.

"""
Order lifecycle

    active --cancel--> cancelled        (stock fully returned)
    active --delete--> (gone)           (stock fully returned first)
    cancelled --delete--> (gone)        (stock already returned, untouched)

Every mutating call is a single DB transaction (run_in_transaction): order
rows, line items and all stock movements commit together or not at all.
Creation validates every line against current stock, aggregated per product,
before anything is written.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import case, func, or_

from ..errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Agent, Customer, Order, OrderItem, Product, User
from ..time_utils import vietnam_year_bounds, to_vietnam_date
from ..validation import (
    ModelValidationPolicy,
    OrderFilter,
    PAYMENT_STATUSES,
    enforce_rules_order,
    validate_order_items,
    validate_payload,
)
from . import stock_service
from .actor import Actor, system_actor
from .agents_service import ensure_default_agent, get_agent
from .concurrency import run_in_transaction
from .customers_service import create_customer, ensure_default_customer, get_customer
from .document_service import next_order_number
from .listing import paginate_query

logger = logging.getLogger(__name__)

ORDER_HEADER_FIELDS = {
    "customer_id", "agent_id", "vat_rate", "shipping_fee", "payment_status",
    "paid_amount", "debt_amount", "delivery_date", "delivery_address", "notes",
}

ORDER_CREATE_POLICY = ModelValidationPolicy(writable_fields=ORDER_HEADER_FIELDS)
ORDER_UPDATE_POLICY = ModelValidationPolicy(writable_fields=ORDER_HEADER_FIELDS - {"customer_id", "agent_id"})

# Free-text fields accepted next to the order columns
CREATE_EXTRA_FIELDS = {"items", "customer_name", "customer_phone", "customer_address"}


@dataclass
class _Line:
    product: Product
    quantity: int
    unit_price: float
    notes: str | None = None

    @property
    def total_price(self) -> float:
        return self.quantity * self.unit_price


def compute_totals(lines, vat_rate: float, shipping_fee: float) -> dict:
    """subtotal = sum of line totals; vat = subtotal * rate / 100 (not rounded per line)."""
    subtotal = sum(line.quantity * line.unit_price for line in lines)
    vat_amount = subtotal * vat_rate / 100
    return {
        "subtotal": subtotal,
        "vat_rate": vat_rate,
        "vat_amount": vat_amount,
        "shipping_fee": shipping_fee,
        "total_amount": subtotal + vat_amount + shipping_fee,
    }


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        raise NotFoundError(f"Order {order_number!r} not found", {"order_number": order_number})
    return order


def _split_payload(payload: dict, policy: ModelValidationPolicy, extra: set[str]) -> tuple[dict, dict]:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    header_raw = {k: v for k, v in payload.items() if k not in extra}
    extras = {k: v for k, v in payload.items() if k in extra}
    header = validate_payload(model=Order, payload=header_raw, policy=policy, partial=True)
    enforce_rules_order(header)
    return header, extras


def _resolve_parties(header: dict, extras: dict) -> tuple[Customer, Agent | None]:
    """
    customer_id -> that customer; customer_name -> new customer under the
    given agent (or the retail agent); neither -> the walk-in customer.
    The order's agent is the supplied one, else the customer's own agent.
    """
    agent = get_agent(header["agent_id"]) if header.get("agent_id") else None

    if header.get("customer_id"):
        customer = get_customer(header["customer_id"])
    elif extras.get("customer_name") and str(extras["customer_name"]).strip():
        customer = create_customer(
            patch={
                "name": str(extras["customer_name"]).strip(),
                "phone": (str(extras["customer_phone"]).strip() or None) if extras.get("customer_phone") else None,
                "address": (str(extras["customer_address"]).strip() or None) if extras.get("customer_address") else None,
            },
            agent_id=agent.id if agent else ensure_default_agent().id,
            commit=False,
        )
    else:
        customer = ensure_default_customer()

    if agent is None:
        agent = customer.agent
    return customer, agent


def _load_lines(raw_items: list[dict]) -> list[_Line]:
    """Resolve products and check stock, summing quantities when a product repeats."""
    lines: list[_Line] = []
    requested: dict[int, int] = {}
    for item in raw_items:
        product = db.session.get(Product, item["product_id"])
        if product is None or not product.is_active:
            raise NotFoundError(
                f"Product {item['product_id']} not found or inactive", {"product_id": item["product_id"]}
            )
        lines.append(_Line(product, item["quantity"], item["unit_price"], item.get("notes")))
        requested[product.id] = requested.get(product.id, 0) + item["quantity"]

    for line in lines:
        want = requested[line.product.id]
        if line.product.stock_quantity < want:
            raise InsufficientStockError(
                f"Insufficient stock for {line.product.code}: on hand {line.product.stock_quantity}, requested {want}",
                {"product_id": line.product.id, "code": line.product.code,
                 "available": line.product.stock_quantity, "requested": want},
            )
    return lines


def _order_item(line: _Line) -> OrderItem:
    return OrderItem(
        product_id=line.product.id,
        product_name=line.product.name,
        quantity=line.quantity,
        unit_price=line.unit_price,
        total_price=line.total_price,
        notes=line.notes,
    )


def create_order(*, payload: dict, actor: Actor) -> Order:
    header, extras = _split_payload(payload, ORDER_CREATE_POLICY, CREATE_EXTRA_FIELDS)
    raw_items = validate_order_items(extras.get("items"))

    def _op() -> Order:
        customer, agent = _resolve_parties(header, extras)
        lines = _load_lines(raw_items)

        totals = compute_totals(lines, header.get("vat_rate") or 0, header.get("shipping_fee") or 0)
        order = Order(
            order_number=next_order_number(),
            customer_id=customer.id,
            agent_id=agent.id if agent else None,
            customer_name=customer.name,
            customer_phone=customer.phone,
            agent_name=agent.name if agent else None,
            payment_status=header.get("payment_status") or "pending",
            paid_amount=header.get("paid_amount") or 0,
            debt_amount=header.get("debt_amount") or 0,
            delivery_date=header.get("delivery_date"),
            delivery_address=header.get("delivery_address"),
            notes=header.get("notes"),
            status="active",
            created_by_user_id=actor.user_id,
            items=[_order_item(line) for line in lines],
            **totals,
        )
        db.session.add(order)
        db.session.flush()

        for line in lines:
            stock_service._export_inner(
                product_id=line.product.id,
                quantity=line.quantity,
                order_id=order.id,
                actor=actor,
                unit_price=line.unit_price,
            )
        return order

    order = run_in_transaction(_op)
    logger.info("Created order %s total=%s by=%s", order.order_number, order.total_amount, actor.name)
    return order


def _quantities(items) -> "OrderedDict[int, int]":
    totals: OrderedDict[int, int] = OrderedDict()
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def update_order(*, order_id: int, payload: dict, actor: Actor) -> Order:
    """
    Patch an active order.

    When `items` is given the stock is reconciled per product: decreases are
    returned (attributed to the system user), increases are exported at the
    new line's unit price, dropped products are fully returned and new ones
    freshly exported. Totals are recomputed when items, VAT or shipping change.
    """
    header, extras = _split_payload(payload, ORDER_UPDATE_POLICY, {"items"})
    raw_items = validate_order_items(extras["items"]) if "items" in extras else None

    def _op() -> Order:
        order = get_order(order_id)
        if order.status == "cancelled":
            raise InvalidStateError(
                f"Order {order.order_number} is cancelled and cannot be changed",
                {"order_id": order.id, "status": order.status},
            )

        lines = None
        if raw_items is not None:
            lines = _reconcile_items(order, raw_items, actor)

        if lines is not None or "vat_rate" in header or "shipping_fee" in header:
            vat_rate = header["vat_rate"] if header.get("vat_rate") is not None else order.vat_rate
            shipping = header["shipping_fee"] if header.get("shipping_fee") is not None else order.shipping_fee
            totals = compute_totals(lines if lines is not None else order.items, vat_rate, shipping)
            for k, v in totals.items():
                setattr(order, k, v)

        for k in ("payment_status", "paid_amount", "debt_amount", "delivery_date", "delivery_address", "notes"):
            if k in header:
                value = header[k]
                if k in ("payment_status", "paid_amount", "debt_amount") and value is None:
                    continue
                setattr(order, k, value)

        order.updated_by_user_id = actor.user_id
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    logger.info("Updated order %s by=%s", order.order_number, actor.name)
    return order


def _reconcile_items(order: Order, raw_items: list[dict], actor: Actor) -> list[_Line]:
    old_qty = _quantities(order.items)

    lines: list[_Line] = []
    new_qty: OrderedDict[int, int] = OrderedDict()
    price_for: dict[int, float] = {}
    for item in raw_items:
        product = db.session.get(Product, item["product_id"])
        if product is None:
            raise NotFoundError(f"Product {item['product_id']} not found", {"product_id": item["product_id"]})
        if not product.is_active and product.id not in old_qty:
            raise NotFoundError(f"Product {product.id} is inactive", {"product_id": product.id})
        lines.append(_Line(product, item["quantity"], item["unit_price"], item.get("notes")))
        new_qty[product.id] = new_qty.get(product.id, 0) + item["quantity"]
        price_for[product.id] = item["unit_price"]

    compensator = system_actor()
    for product_id in list(old_qty) + [p for p in new_qty if p not in old_qty]:
        delta = new_qty.get(product_id, 0) - old_qty.get(product_id, 0)
        if delta < 0:
            stock_service._return_inner(
                product_id=product_id, quantity=-delta, order_id=order.id, actor=compensator
            )
        elif delta > 0:
            stock_service._export_inner(
                product_id=product_id,
                quantity=delta,
                order_id=order.id,
                actor=actor,
                unit_price=price_for[product_id],
            )

    order.items = [_order_item(line) for line in lines]
    return lines


def _return_all(order: Order, actor: Actor) -> None:
    for product_id, quantity in _quantities(order.items).items():
        stock_service._return_inner(product_id=product_id, quantity=quantity, order_id=order.id, actor=actor)


def cancel_order(*, order_id: int, actor: Actor) -> Order:
    def _op() -> Order:
        order = get_order(order_id)
        if order.status == "cancelled":
            raise InvalidStateError(
                f"Order {order.order_number} is already cancelled",
                {"order_id": order.id, "status": order.status},
            )
        _return_all(order, actor)
        order.status = "cancelled"
        order.updated_by_user_id = actor.user_id
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    logger.info("Cancelled order %s by=%s", order.order_number, actor.name)
    return order


def delete_order(*, order_id: int, actor: Actor) -> None:
    """Permanent delete. Active orders give their stock back first."""
    def _op() -> str:
        order = get_order(order_id)
        if order.status == "active":
            _return_all(order, actor)
        if order.invoice is not None:
            db.session.delete(order.invoice)
        number = order.order_number
        db.session.delete(order)
        db.session.flush()
        return number

    number = run_in_transaction(_op)
    logger.info("Deleted order %s by=%s", number, actor.name)


def update_payment_status(*, order_id: int, payment_status: str, actor: Actor) -> Order:
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")

    def _op() -> Order:
        order = get_order(order_id)
        order.payment_status = payment_status
        order.updated_by_user_id = actor.user_id
        db.session.flush()
        return order

    return run_in_transaction(_op)


# =============================================================================
# Queries
# =============================================================================

def list_orders(filt: OrderFilter) -> dict:
    query = db.session.query(Order)
    if filt.search:
        pattern = f"%{filt.search}%"
        query = query.outerjoin(User, User.id == Order.created_by_user_id).filter(
            or_(
                Order.order_number.ilike(pattern),
                Order.customer_name.ilike(pattern),
                Order.agent_name.ilike(pattern),
                Order.notes.ilike(pattern),
                User.full_name.ilike(pattern),
            )
        )
    if filt.payment_status:
        query = query.filter(Order.payment_status == filt.payment_status)
    if filt.status:
        query = query.filter(Order.status == filt.status)
    if filt.customer_id:
        query = query.filter(Order.customer_id == filt.customer_id)
    if filt.agent_id:
        query = query.filter(Order.agent_id == filt.agent_id)

    start, end = filt.period.bounds()
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)

    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate_query(query, filt.page)


def orders_by_customer(customer_id: int) -> list[Order]:
    get_customer(customer_id)
    return (
        db.session.query(Order)
        .filter(Order.customer_id == customer_id, Order.status == "active")
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def orders_by_agent(agent_id: int) -> list[Order]:
    get_agent(agent_id)
    return (
        db.session.query(Order)
        .filter(Order.agent_id == agent_id, Order.status == "active")
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def pending_payment_orders() -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.status == "active", Order.payment_status.in_(("pending", "debt")))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def order_stats(start=None, end=None) -> dict:
    """Active-order totals over an optional UTC [start, end) window."""
    query = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_amount), 0),
        func.coalesce(func.sum(case((Order.payment_status == "debt", Order.total_amount), else_=0)), 0),
        func.coalesce(func.sum(case((Order.payment_status == "completed", Order.total_amount), else_=0)), 0),
    ).filter(Order.status == "active")
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at < end)

    count, revenue, debt, completed = query.one()
    margin = current_app.config.get("ESTIMATED_PROFIT_MARGIN", 0.3)
    return {
        "total_orders": int(count or 0),
        "total_revenue": float(revenue or 0),
        "total_debt": float(debt or 0),
        "completed_revenue": float(completed or 0),
        "estimated_profit": float(completed or 0) * margin,
    }


def monthly_revenue(year: int) -> list[dict]:
    """Completed revenue of active orders per Vietnam calendar month of `year` (months with sales only)."""
    start, end = vietnam_year_bounds(year)
    rows = (
        db.session.query(Order.created_at, Order.total_amount)
        .filter(
            Order.status == "active",
            Order.payment_status == "completed",
            Order.created_at >= start,
            Order.created_at < end,
        )
        .all()
    )
    buckets: dict[int, dict] = {}
    for created_at, amount in rows:
        month = to_vietnam_date(created_at).month
        bucket = buckets.setdefault(month, {"month": month, "total_revenue": 0.0, "total_orders": 0})
        bucket["total_revenue"] += amount
        bucket["total_orders"] += 1
    return [buckets[m] for m in sorted(buckets)]
