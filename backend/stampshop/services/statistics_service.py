# Overview: Read-only reporting over orders, stock and parties; revenue counts active orders only.

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Agent, Customer, Order, OrderItem, Product
from ..time_utils import (
    now_in_vietnam,
    to_utc_z,
    to_vietnam_date,
    utcnow,
    vietnam_month_bounds,
    vietnam_range_bounds,
    vietnam_year_bounds,
)
from ..validation import REVENUE_GROUPINGS, Period
from . import orders_service, stock_service
from .customers_service import percentage_change

NO_TOP_ENTITY = "Chưa có"


def _within(query, column, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column < end)
    return query


def _margin() -> float:
    return current_app.config.get("ESTIMATED_PROFIT_MARGIN", 0.3)


def _top_customer_rows(limit: int, start=None, end=None):
    total = func.sum(Order.total_amount)
    query = (
        db.session.query(
            Order.customer_id,
            func.max(Order.customer_name).label("customer_name"),
            func.max(Order.customer_phone).label("customer_phone"),
            total.label("total_spent"),
            func.count(Order.id).label("order_count"),
        )
        .filter(Order.status == "active")
    )
    query = _within(query, Order.created_at, start, end)
    return query.group_by(Order.customer_id).order_by(total.desc()).limit(limit).all()


def _top_agent_rows(limit: int, start=None, end=None):
    total = func.sum(Order.total_amount)
    query = (
        db.session.query(
            Order.agent_id,
            func.max(Order.agent_name).label("agent_name"),
            total.label("total_sales"),
            func.count(Order.id).label("order_count"),
        )
        .filter(Order.status == "active", Order.agent_id.isnot(None))
    )
    query = _within(query, Order.created_at, start, end)
    return query.group_by(Order.agent_id).order_by(total.desc()).limit(limit).all()


def top_customers(limit: int = 10, period: Period = Period()) -> list[dict]:
    start, end = period.bounds()
    out = []
    for row in _top_customer_rows(limit, start, end):
        count = int(row.order_count or 0)
        spent = float(row.total_spent or 0)
        out.append({
            "customer_id": row.customer_id,
            "customer_name": row.customer_name,
            "customer_phone": row.customer_phone,
            "total_spent": spent,
            "order_count": count,
            "avg_order_value": spent / count if count else 0.0,
        })
    return out


def top_agents(limit: int = 10, period: Period = Period()) -> list[dict]:
    start, end = period.bounds()
    out = []
    for row in _top_agent_rows(limit, start, end):
        count = int(row.order_count or 0)
        sales = float(row.total_sales or 0)
        out.append({
            "agent_id": row.agent_id,
            "agent_name": row.agent_name,
            "total_sales": sales,
            "order_count": count,
            "avg_order_value": sales / count if count else 0.0,
        })
    return out


TOP_PRODUCT_RANKINGS = ("quantity", "revenue")


def top_products(limit: int = 10, period: Period = Period(), rank_by: str = "quantity") -> list[dict]:
    """
    Products sold in active orders, best sellers first.

    `rank_by` is "quantity" (units sold) or "revenue" (line totals).
    """
    if rank_by not in TOP_PRODUCT_RANKINGS:
        raise ValidationError(f"rank_by must be one of: {', '.join(TOP_PRODUCT_RANKINGS)}")
    start, end = period.bounds()
    revenue = func.sum(OrderItem.total_price)
    quantity = func.sum(OrderItem.quantity)
    ranking = quantity if rank_by == "quantity" else revenue
    query = (
        db.session.query(
            OrderItem.product_id,
            func.max(OrderItem.product_name).label("product_name"),
            quantity.label("total_quantity"),
            revenue.label("total_revenue"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status == "active")
    )
    query = _within(query, Order.created_at, start, end)
    rows = query.group_by(OrderItem.product_id).order_by(ranking.desc()).limit(limit).all()

    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_([r.product_id for r in rows])).all()
    } if rows else {}

    out = []
    for row in rows:
        qty = int(row.total_quantity or 0)
        total = float(row.total_revenue or 0)
        product = products.get(row.product_id)
        out.append({
            "product_id": row.product_id,
            "product_code": product.code if product else None,
            "product_name": row.product_name,
            "total_quantity": qty,
            "total_revenue": total,
            "avg_price": total / qty if qty else 0.0,
            "current_stock": product.stock_quantity if product else 0,
        })
    return out


def overview(period: Period = Period()) -> dict:
    start, end = period.bounds()

    top_customer = _top_customer_rows(1, start, end)
    top_agent = _top_agent_rows(1, start, end)

    return {
        "period": {"start": to_utc_z(start), "end": to_utc_z(end), "preset": period.preset},
        "orders": orders_service.order_stats(start, end),
        "products": stock_service.summary(),
        "customers": {
            "total_customers": db.session.query(func.count(Customer.id)).scalar() or 0,
            "top_customer": {
                "id": top_customer[0].customer_id,
                "name": top_customer[0].customer_name,
                "total_spent": float(top_customer[0].total_spent or 0),
            } if top_customer else NO_TOP_ENTITY,
        },
        "agents": {
            "total_agents": db.session.query(func.count(Agent.id)).scalar() or 0,
            "top_agent": {
                "id": top_agent[0].agent_id,
                "name": top_agent[0].agent_name,
                "total_sales": float(top_agent[0].total_sales or 0),
            } if top_agent else NO_TOP_ENTITY,
        },
    }


def _new_customers(start: datetime, end: datetime) -> int:
    return (
        db.session.query(func.count(Customer.id))
        .filter(Customer.created_at >= start, Customer.created_at < end)
        .scalar()
        or 0
    )


def _comparison_windows(start_date: Optional[date], end_date: Optional[date]):
    if (start_date is None) != (end_date is None):
        raise ValidationError("start_date and end_date must be given together")

    if start_date is None:
        today = now_in_vietnam()
        current = vietnam_month_bounds(today.year, today.month)
        if today.month == 1:
            previous = vietnam_month_bounds(today.year - 1, 12)
        else:
            previous = vietnam_month_bounds(today.year, today.month - 1)
        return current, previous

    if start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")
    cur_start, cur_end = vietnam_range_bounds(start_date, end_date)
    length = cur_end - cur_start
    return (cur_start, cur_end), (cur_start - length, cur_start)


def period_comparison(start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
    """
    Current window vs the window of equal length right before it.

    Without dates the windows are this Vietnam calendar month and the previous
    one.
    """
    (cur_start, cur_end), (prev_start, prev_end) = _comparison_windows(start_date, end_date)

    cur = orders_service.order_stats(cur_start, cur_end)
    prev = orders_service.order_stats(prev_start, prev_end)
    cur["new_customers"] = _new_customers(cur_start, cur_end)
    prev["new_customers"] = _new_customers(prev_start, prev_end)

    metrics = {
        "revenue": "total_revenue",
        "orders": "total_orders",
        "completed_revenue": "completed_revenue",
        "debt": "total_debt",
        "profit": "estimated_profit",
        "customers": "new_customers",
    }
    return {
        "current_period": {"start": to_utc_z(cur_start), "end": to_utc_z(cur_end), **cur},
        "previous_period": {"start": to_utc_z(prev_start), "end": to_utc_z(prev_end), **prev},
        "changes": {name: percentage_change(cur[key], prev[key]) for name, key in metrics.items()},
    }


def _bucket_key(grouping: str, day: date):
    if grouping == "month":
        return day.month
    if grouping == "quarter":
        return (day.month - 1) // 3 + 1
    return day.year


def revenue_by_period(grouping: str = "month", year: Optional[int] = None) -> list[dict]:
    """
    Active-order revenue bucketed by Vietnam month or quarter of `year`, or by
    year over the last five years.
    """
    if grouping not in REVENUE_GROUPINGS:
        raise ValidationError(f"group_by must be one of: {', '.join(REVENUE_GROUPINGS)}")
    year = year or now_in_vietnam().year

    if grouping == "year":
        start, _ = vietnam_year_bounds(year - 4)
        _, end = vietnam_year_bounds(year)
    else:
        start, end = vietnam_year_bounds(year)

    rows = (
        db.session.query(Order.created_at, Order.total_amount, Order.payment_status)
        .filter(Order.status == "active", Order.created_at >= start, Order.created_at < end)
        .all()
    )

    buckets: dict[int, dict] = {}
    for created_at, amount, payment_status in rows:
        key = _bucket_key(grouping, to_vietnam_date(created_at))
        b = buckets.setdefault(key, {
            grouping: key,
            "total_revenue": 0.0,
            "total_orders": 0,
            "completed_revenue": 0.0,
            "debt_revenue": 0.0,
        })
        b["total_revenue"] += amount
        b["total_orders"] += 1
        if payment_status == "completed":
            b["completed_revenue"] += amount
        else:
            b["debt_revenue"] += amount

    out = []
    for key in sorted(buckets):
        b = buckets[key]
        b["avg_order_value"] = b["total_revenue"] / b["total_orders"] if b["total_orders"] else 0.0
        out.append(b)
    return out


def dashboard(period: Period = Period()) -> dict:
    """Figures for the front page; `revenue_by_month` always has 12 entries for the current year."""
    start, end = period.bounds()
    stats = orders_service.order_stats(start, end)
    margin = _margin()

    by_month = {row["month"]: row for row in revenue_by_period("month", now_in_vietnam().year)}
    revenue_by_month = []
    for month in range(1, 13):
        row = by_month.get(month)
        revenue_by_month.append({
            "month": f"Tháng {month}",
            "revenue": row["total_revenue"] if row else 0.0,
            "profit": row["completed_revenue"] * margin if row else 0.0,
        })

    return {
        "total_revenue": stats["total_revenue"],
        "total_profit": stats["estimated_profit"],
        "total_debt": stats["total_debt"],
        "total_orders": stats["total_orders"],
        "top_customers": top_customers(5, period),
        "top_agents": top_agents(5, period),
        "top_products": top_products(5, period, rank_by="revenue"),
        "revenue_by_month": revenue_by_month,
    }


def debt_report() -> dict:
    """Unpaid (pending or debt) active orders grouped by customer and agent, largest debt first."""
    total = func.sum(Order.total_amount)
    rows = (
        db.session.query(
            Order.customer_id,
            Order.agent_id,
            func.max(Order.customer_name).label("customer_name"),
            func.max(Order.agent_name).label("agent_name"),
            total.label("total_debt"),
            func.count(Order.id).label("order_count"),
            func.min(Order.created_at).label("oldest_order"),
        )
        .filter(Order.status == "active", Order.payment_status.in_(("pending", "debt")))
        .group_by(Order.customer_id, Order.agent_id)
        .order_by(total.desc())
        .all()
    )
    debts = [
        {
            "customer_id": r.customer_id,
            "agent_id": r.agent_id,
            "customer_name": r.customer_name,
            "agent_name": r.agent_name,
            "total_debt": float(r.total_debt or 0),
            "order_count": int(r.order_count or 0),
            "oldest_order": to_utc_z(r.oldest_order),
        }
        for r in rows
    ]
    return {
        "generated_at": to_utc_z(utcnow()),
        "debts": debts,
        "total_debt": sum(d["total_debt"] for d in debts),
        "debt_count": len(debts),
    }
