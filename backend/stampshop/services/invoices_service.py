# Overview: Invoices generated from active orders, print tracking and invoice stats.

from __future__ import annotations

import logging
import math

from flask import current_app
from sqlalchemy import case, func, or_

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Invoice, Order
from ..time_utils import utcnow
from ..validation import InvoiceFilter, Period
from .actor import Actor
from .concurrency import run_in_transaction
from .document_service import next_invoice_number
from .listing import paginate_query

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def create_invoice(*, order_number: str, actor: Actor, notes: str | None = None) -> Invoice:
    """
    Issue the invoice for an active order.

    Subtotal comes from the order's line items; VAT is recomputed at the fixed
    INVOICE_VAT_RATE and rounded to whole đồng; shipping is not invoiced.
    """
    vat_rate = current_app.config.get("INVOICE_VAT_RATE", 10)

    def _op() -> Invoice:
        order = (
            db.session.query(Order)
            .filter(Order.order_number == order_number, Order.status == "active")
            .first()
        )
        if order is None:
            raise NotFoundError(f"Active order {order_number!r} not found", {"order_number": order_number})
        if order.invoice is not None:
            raise ConflictError(
                f"Order {order_number} already has invoice {order.invoice.invoice_code}",
                {"order_number": order_number, "invoice_code": order.invoice.invoice_code},
            )

        subtotal = sum(item.total_price for item in order.items)
        vat = _round_half_up(subtotal * vat_rate / 100)
        customer = order.customer

        invoice = Invoice(
            invoice_code=next_invoice_number(),
            order_id=order.id,
            order_code=order.order_number,
            customer_name=customer.name if customer else (order.customer_name or ""),
            customer_phone=customer.phone if customer else order.customer_phone,
            customer_address=customer.address if customer else None,
            customer_tax_code=customer.tax_code if customer else None,
            agent_name=order.agent.name if order.agent else order.agent_name,
            employee_name=actor.name,
            invoice_date=utcnow(),
            subtotal=subtotal,
            vat=vat,
            shipping_fee=0,
            total_amount=subtotal + vat,
            payment_status=order.payment_status,
            notes=notes,
            is_printed=False,
        )
        db.session.add(invoice)
        db.session.flush()
        return invoice

    invoice = run_in_transaction(_op)
    logger.info("Issued invoice %s for order %s", invoice.invoice_code, order_number)
    return invoice


def list_invoices(filt: InvoiceFilter) -> dict:
    query = db.session.query(Invoice)
    if filt.search:
        pattern = f"%{filt.search}%"
        query = query.filter(
            or_(
                Invoice.invoice_code.ilike(pattern),
                Invoice.order_code.ilike(pattern),
                Invoice.customer_name.ilike(pattern),
                Invoice.customer_phone.ilike(pattern),
                Invoice.agent_name.ilike(pattern),
            )
        )
    if filt.payment_status:
        query = query.filter(Invoice.payment_status == filt.payment_status)
    if filt.is_printed is not None:
        query = query.filter(Invoice.is_printed.is_(filt.is_printed))
    query = _within(query, filt.period)
    query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    return paginate_query(query, filt.page)


def _within(query, period: Period):
    start, end = period.bounds()
    if start is not None:
        query = query.filter(Invoice.invoice_date >= start)
    if end is not None:
        query = query.filter(Invoice.invoice_date < end)
    return query


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found", {"invoice_id": invoice_id})
    return invoice


def get_invoice_by_order(order_number: str) -> Invoice:
    invoice = db.session.query(Invoice).filter(Invoice.order_code == order_number).first()
    if invoice is None:
        raise NotFoundError(f"No invoice for order {order_number!r}", {"order_number": order_number})
    return invoice


def invoice_detail(invoice: Invoice) -> dict:
    data = invoice.to_dict()
    data["items"] = [item.to_dict() for item in invoice.order.items] if invoice.order else []
    return data


def mark_printed(*, invoice_id: int, actor: Actor) -> Invoice:
    invoice = get_invoice(invoice_id)
    invoice.is_printed = True
    invoice.printed_at = utcnow()
    invoice.printed_by = actor.name
    db.session.commit()
    return invoice


def print_data(invoice_id: int) -> dict:
    """Invoice header, line items and the company block for the print layout."""
    invoice = get_invoice(invoice_id)
    cfg = current_app.config
    items = invoice.order.items if invoice.order else []
    return {
        "invoice": invoice.to_dict(),
        "items": [
            {
                "product_code": item.product.code if item.product else None,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "unit": (item.product.unit if item.product and item.product.unit else "cái"),
                "total_price": item.total_price,
            }
            for item in items
        ],
        "company": {
            "name": cfg.get("COMPANY_NAME"),
            "address": cfg.get("COMPANY_ADDRESS"),
            "phone": cfg.get("COMPANY_PHONE"),
            "email": cfg.get("COMPANY_EMAIL"),
            "tax_code": cfg.get("COMPANY_TAX_CODE"),
        },
    }


def invoice_stats(period: Period) -> dict:
    query = _within(
        db.session.query(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(case((Invoice.payment_status == "completed", Invoice.total_amount), else_=0)), 0),
            func.coalesce(func.sum(case((Invoice.payment_status == "debt", Invoice.total_amount), else_=0)), 0),
            func.coalesce(func.sum(case((Invoice.is_printed.is_(True), 1), else_=0)), 0),
        ),
        period,
    )
    count, amount, paid, debt, printed = query.one()
    return {
        "total_invoices": int(count or 0),
        "total_amount": float(amount or 0),
        "total_paid": float(paid or 0),
        "total_debt": float(debt or 0),
        "printed_invoices": int(printed or 0),
    }


def unprinted_invoices() -> list[Invoice]:
    return (
        db.session.query(Invoice)
        .filter(Invoice.is_printed.is_(False))
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .all()
    )
