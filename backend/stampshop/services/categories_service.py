# Overview: Product categories; names are unique ignoring case and referenced by products by name.

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Category, Product
from ..validation import Page
from .listing import paginated

logger = logging.getLogger(__name__)


def _name_taken(name: str, exclude_id: int | None = None) -> bool:
    query = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    return query.first() is not None


def _product_count(name: str) -> int:
    return db.session.query(func.count(Product.id)).filter(Product.category == name).scalar() or 0


def category_to_dict(category: Category) -> dict:
    data = category.to_dict()
    data["product_count"] = _product_count(category.name)
    return data


def list_categories(*, search: str | None, page: Page) -> dict:
    query = db.session.query(Category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Category.name.ilike(pattern), Category.description.ilike(pattern)))
    query = query.order_by(Category.name.asc())
    total = query.count()
    rows = query.offset(page.offset).limit(page.limit).all()
    return paginated([category_to_dict(c) for c in rows], total, page)


def list_active_categories() -> list[dict]:
    rows = (
        db.session.query(Category)
        .filter(Category.is_active.is_(True))
        .order_by(Category.name.asc())
        .all()
    )
    return [category_to_dict(c) for c in rows]


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})
    return category


def create_category(*, patch: dict) -> Category:
    if _name_taken(patch["name"]):
        raise ConflictError(f"Category {patch['name']!r} already exists", {"name": patch["name"]})
    category = Category(**patch)
    db.session.add(category)
    db.session.commit()
    return category


def update_category(*, category_id: int, patch: dict) -> Category:
    """Renaming a category rewrites the category name on every product using it."""
    category = get_category(category_id)
    old_name = category.name
    new_name = patch.get("name")

    if new_name is not None and new_name != old_name:
        if _name_taken(new_name, exclude_id=category.id):
            raise ConflictError(f"Category {new_name!r} already exists", {"name": new_name})
        renamed = (
            db.session.query(Product)
            .filter(Product.category == old_name)
            .update({Product.category: new_name}, synchronize_session="fetch")
        )
        logger.info("Renamed category %r -> %r (%d products)", old_name, new_name, renamed)

    for k, v in patch.items():
        setattr(category, k, v)
    db.session.commit()
    return category


def delete_category(*, category_id: int) -> None:
    category = get_category(category_id)
    in_use = _product_count(category.name)
    if in_use:
        raise ConflictError(
            f"Category {category.name!r} is used by {in_use} products",
            {"category_id": category.id, "product_count": in_use},
        )
    db.session.delete(category)
    db.session.commit()
