# backend/stampshop/services/products_service.py
"""
Product catalog.

Product codes are matched exactly (case-sensitive). Stock fields are owned by
stock_service; this module never writes stock_quantity or avg_import_price.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..validation import Page
from .listing import paginate_query

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "code", "name", "current_price", "min_stock", "category", "color",
    "size", "unit", "notes", "image_url", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _code_taken(code: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter(Product.code == code)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def list_products(*, search: str | None, page: Page, include_inactive: bool = False) -> dict:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Product.code.ilike(pattern), Product.name.ilike(pattern), Product.category.ilike(pattern))
        )
    query = query.order_by(Product.code.asc(), Product.id.asc())
    return paginate_query(query, page)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return product


def get_product_by_code(code: str) -> Product:
    product = db.session.query(Product).filter(Product.code == code).first()
    if product is None:
        raise NotFoundError(f"Product with code {code!r} not found", {"code": code})
    return product


def create_product(*, patch: dict) -> Product:
    """
    Create product from a validated patch. Stock always starts at zero and
    enters through stock_service.import_stock.
    """
    code = patch.get("code")
    if _code_taken(code):
        raise ConflictError(f"Product code {code!r} already exists", {"code": code})

    p = Product(stock_quantity=0, avg_import_price=0)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.commit()

    logger.info("Created product id=%s code=%s", p.id, p.code)
    return p


def update_product(*, product_id: int, patch: dict) -> Product:
    p = get_product(product_id)
    if "code" in patch and patch["code"] != p.code and _code_taken(patch["code"], exclude_id=p.id):
        raise ConflictError(f"Product code {patch['code']!r} already exists", {"code": patch["code"]})

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def delete_product(*, product_id: int) -> Product:
    """Soft delete. Orders and ledger rows keep referencing the product."""
    p = get_product(product_id)
    p.is_active = False
    db.session.commit()
    logger.info("Deactivated product id=%s code=%s", p.id, p.code)
    return p


def find_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_quantity <= Product.min_stock)
        .order_by(Product.stock_quantity.asc(), Product.code.asc())
        .all()
    )


def top_selling_products(limit: int = 10) -> list[dict]:
    """Products ranked by quantity sold on active orders."""
    total_sold = func.sum(OrderItem.quantity)
    rows = (
        db.session.query(
            Product,
            total_sold.label("total_sold"),
            func.sum(OrderItem.total_price).label("total_revenue"),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status == "active")
        .group_by(Product.id)
        .order_by(total_sold.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": p.id,
            "code": p.code,
            "name": p.name,
            "current_price": p.current_price,
            "stock_quantity": p.stock_quantity,
            "total_sold": int(sold or 0),
            "total_revenue": float(revenue or 0),
        }
        for p, sold, revenue in rows
    ]
