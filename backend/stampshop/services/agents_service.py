# Overview: Agent (resale partner) records and the built-in retail agent.

from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Agent, Customer, Order
from ..models.customers import DEFAULT_AGENT_KEY
from ..validation import Page
from .listing import paginated

logger = logging.getLogger(__name__)

DEFAULT_AGENT_NAME = "Bán lẻ"
DEFAULT_AGENT_PHONE = "0000000000"

AGENT_MUTABLE_FIELDS = {"name", "phone", "address", "email", "commission_rate", "notes", "is_active"}


def _search_filter(keyword: str):
    pattern = f"%{keyword}%"
    return or_(Agent.name.ilike(pattern), Agent.phone.ilike(pattern), Agent.email.ilike(pattern))


def _active_order_totals():
    return (
        db.session.query(
            Order.agent_id.label("agent_id"),
            func.count(Order.id).label("total_orders"),
            func.sum(Order.total_amount).label("total_amount"),
        )
        .filter(Order.status == "active", Order.agent_id.isnot(None))
        .group_by(Order.agent_id)
        .subquery()
    )


def list_agents(*, search: str | None, page: Page) -> dict:
    """Agents with their active-order count and total."""
    totals = _active_order_totals()
    query = (
        db.session.query(Agent, totals.c.total_orders, totals.c.total_amount)
        .outerjoin(totals, totals.c.agent_id == Agent.id)
    )
    if search:
        query = query.filter(_search_filter(search))
    query = query.order_by(Agent.created_at.desc(), Agent.id.desc())

    total = query.count()
    rows = query.offset(page.offset).limit(page.limit).all()
    items = []
    for agent, orders, amount in rows:
        data = agent.to_dict()
        data["total_orders"] = int(orders or 0)
        data["total_amount"] = float(amount or 0)
        items.append(data)
    return paginated(items, total, page)


def search_agents(keyword: str) -> list[Agent]:
    return db.session.query(Agent).filter(_search_filter(keyword)).order_by(Agent.name.asc()).all()


def get_agent(agent_id: int) -> Agent:
    agent = db.session.get(Agent, agent_id)
    if agent is None:
        raise NotFoundError(f"Agent {agent_id} not found", {"agent_id": agent_id})
    return agent


def create_agent(*, patch: dict, commit: bool = True) -> Agent:
    agent = Agent(**{k: v for k, v in patch.items() if k in AGENT_MUTABLE_FIELDS})
    db.session.add(agent)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return agent


def update_agent(*, agent_id: int, patch: dict) -> Agent:
    """Customers keep their agent_name snapshot; renaming an agent does not rewrite them."""
    agent = get_agent(agent_id)
    for k, v in patch.items():
        if k in AGENT_MUTABLE_FIELDS:
            setattr(agent, k, v)
    db.session.commit()
    return agent


def delete_agent(*, agent_id: int) -> None:
    agent = get_agent(agent_id)
    if agent.system_key:
        raise ConflictError("The built-in retail agent cannot be deleted", {"agent_id": agent.id})
    customers = db.session.query(func.count(Customer.id)).filter(Customer.agent_id == agent.id).scalar()
    orders = db.session.query(func.count(Order.id)).filter(Order.agent_id == agent.id).scalar()
    if customers or orders:
        raise ConflictError(
            f"Agent {agent.name!r} still has customers or orders",
            {"agent_id": agent.id, "customers": customers, "orders": orders},
        )
    db.session.delete(agent)
    db.session.commit()


def ensure_default_agent() -> Agent:
    """
    Return the built-in "Bán lẻ" agent, creating it if missing.

    Idempotent under concurrency: system_key is unique, so a losing insert
    raises IntegrityError inside the savepoint and we fetch the winner's row.
    """
    agent = db.session.query(Agent).filter_by(system_key=DEFAULT_AGENT_KEY).first()
    if agent is not None:
        return agent
    try:
        with db.session.begin_nested():
            agent = Agent(
                name=DEFAULT_AGENT_NAME,
                phone=DEFAULT_AGENT_PHONE,
                notes="Đại lý mặc định cho khách lẻ",
                system_key=DEFAULT_AGENT_KEY,
            )
            db.session.add(agent)
        logger.info("Created default agent id=%s", agent.id)
        return agent
    except IntegrityError:
        return db.session.query(Agent).filter_by(system_key=DEFAULT_AGENT_KEY).one()
