# Overview: Stock ledger; the single writer of Product.stock_quantity and Product.avg_import_price.

"""
Stock ledger invariants

- stock_quantity is a stored field, changed only through _apply_movement().
- Every movement updates the product and appends one StockTransaction in the
  same DB transaction; callers see either both effects or an error.
- stock_quantity never goes below zero: a movement that would do so raises
  InsufficientStockError and leaves the product untouched.
- Product rows carry a version counter. A concurrent writer makes the flush
  fail with StaleDataError, the whole unit is rolled back and re-run against
  the committed stock (run_with_retry).
- avg_import_price changes only on purchase imports (weighted average);
  returns, exports and adjustments leave it alone.
- Sum of signed quantities for a product == its current stock_quantity.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockTransaction
from ..validation import StockReportFilter
from .actor import Actor
from .concurrency import lock_for_update, run_in_transaction

logger = logging.getLogger(__name__)

IMPORT = "import"
EXPORT = "export"
ADJUSTMENT = "adjustment"

DEFAULT_IMPORT_REASON = "Nhập kho"
EXPORT_REASON = "Xuất kho cho đơn hàng"
RETURN_REASON = "Hoàn trả kho do hủy đơn hàng"
STOCKTAKE_REASON = "Kiểm kê kho"


def adjust_average_import_price(product: Product, incoming_qty: int, incoming_unit_price: float) -> float:
    """
    Weighted average cost after receiving `incoming_qty` units at `incoming_unit_price`.

    (S*A + q*p) / (S + q), and exactly p when the product has no stock.
    """
    stock = product.stock_quantity or 0
    if stock == 0:
        return incoming_unit_price
    current = product.avg_import_price or 0
    return (stock * current + incoming_qty * incoming_unit_price) / (stock + incoming_qty)


def _load_product(*, product_id: int | None = None, code: str | None = None) -> Product:
    query = db.session.query(Product)
    if product_id is not None:
        query = query.filter(Product.id == product_id)
        missing = f"Product {product_id} not found"
    else:
        query = query.filter(Product.code == code)
        missing = f"Product with code {code!r} not found"
    product = lock_for_update(query).first()
    if product is None:
        raise NotFoundError(missing, {"product_id": product_id, "code": code})
    return product


def _apply_movement(
    product: Product,
    *,
    transaction_type: str,
    quantity: int,
    unit_price: float,
    actor: Actor,
    reason: str | None,
    notes: str | None = None,
    order_id: int | None = None,
    update_average: bool = False,
) -> StockTransaction:
    """Core movement without retry or commit. `quantity` is signed."""
    stock_before = product.stock_quantity
    stock_after = stock_before + quantity
    if stock_after < 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.code}: on hand {stock_before}, requested {-quantity}",
            {"product_id": product.id, "code": product.code, "available": stock_before, "requested": -quantity},
        )

    if update_average:
        product.avg_import_price = adjust_average_import_price(product, quantity, unit_price)
    product.stock_quantity = stock_after

    tx = StockTransaction(
        product_id=product.id,
        product_code=product.code,
        product_name=product.name,
        transaction_type=transaction_type,
        quantity=quantity,
        unit_price=unit_price,
        total_value=abs(quantity) * unit_price,
        stock_before=stock_before,
        stock_after=stock_after,
        order_id=order_id,
        user_id=actor.user_id,
        user_name=actor.name,
        reason=reason,
        notes=notes,
    )
    db.session.add(tx)
    db.session.flush()

    logger.info(
        "stock %s %s qty=%+d %d->%d order=%s by=%s",
        transaction_type, product.code, quantity, stock_before, stock_after, order_id, actor.name,
    )
    return tx


def _require_positive(quantity: int) -> None:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")


def _export_inner(*, product_id: int, quantity: int, order_id: int | None, actor: Actor,
                  unit_price: float | None = None) -> StockTransaction:
    _require_positive(quantity)
    product = _load_product(product_id=product_id)
    price = unit_price if unit_price is not None else (product.current_price or 0)
    return _apply_movement(
        product,
        transaction_type=EXPORT,
        quantity=-quantity,
        unit_price=price,
        actor=actor,
        reason=EXPORT_REASON,
        order_id=order_id,
    )


def _return_inner(*, product_id: int, quantity: int, order_id: int | None, actor: Actor) -> StockTransaction:
    # Returns reuse the import type, valued at 0 and without touching the average
    _require_positive(quantity)
    product = _load_product(product_id=product_id)
    return _apply_movement(
        product,
        transaction_type=IMPORT,
        quantity=quantity,
        unit_price=0,
        actor=actor,
        reason=RETURN_REASON,
        order_id=order_id,
    )


def _run(op, commit: bool):
    if not commit:
        return op()
    return run_in_transaction(op)


def import_stock(
    *,
    code: str,
    quantity: int,
    unit_price: float,
    actor: Actor,
    reason: str | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> StockTransaction:
    """Receive purchased stock and fold its cost into the weighted average."""
    _require_positive(quantity)
    if unit_price is None or unit_price < 0:
        raise ValidationError("unit_price must be >= 0")

    def _op():
        product = _load_product(code=code)
        return _apply_movement(
            product,
            transaction_type=IMPORT,
            quantity=quantity,
            unit_price=unit_price,
            actor=actor,
            reason=reason or DEFAULT_IMPORT_REASON,
            notes=notes,
            update_average=True,
        )

    return _run(_op, commit)


def export_stock(
    *,
    product_id: int,
    quantity: int,
    order_id: int | None,
    actor: Actor,
    unit_price: float | None = None,
    commit: bool = True,
) -> StockTransaction:
    """Take stock out for an order. Valued at unit_price, else the product's current price."""
    return _run(
        lambda: _export_inner(
            product_id=product_id, quantity=quantity, order_id=order_id, actor=actor, unit_price=unit_price
        ),
        commit,
    )


def return_stock(
    *,
    product_id: int,
    quantity: int,
    order_id: int | None,
    actor: Actor,
    commit: bool = True,
) -> StockTransaction:
    return _run(
        lambda: _return_inner(product_id=product_id, quantity=quantity, order_id=order_id, actor=actor),
        commit,
    )


def adjust_stock(
    *,
    code: str,
    quantity: int,
    reason: str,
    actor: Actor,
    notes: str | None = None,
    commit: bool = True,
) -> StockTransaction:
    """Manual correction by a signed delta. Cannot drive stock negative."""
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity == 0:
        raise ValidationError("quantity must be a non-zero integer")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required for adjustments")

    def _op():
        product = _load_product(code=code)
        return _apply_movement(
            product,
            transaction_type=ADJUSTMENT,
            quantity=quantity,
            unit_price=0,
            actor=actor,
            reason=str(reason).strip(),
            notes=notes,
        )

    return _run(_op, commit)


def count_stock(
    *,
    code: str,
    counted_quantity: int,
    actor: Actor,
    reason: str | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> StockTransaction:
    """
    Set stock to a physically counted quantity.

    Recorded as an adjustment by the difference from the current stock; a
    count that matches is still recorded, with quantity 0.
    """
    if not isinstance(counted_quantity, int) or isinstance(counted_quantity, bool) or counted_quantity < 0:
        raise ValidationError("counted quantity must be a non-negative integer")

    def _op():
        product = _load_product(code=code)
        return _apply_movement(
            product,
            transaction_type=ADJUSTMENT,
            quantity=counted_quantity - product.stock_quantity,
            unit_price=0,
            actor=actor,
            reason=(str(reason).strip() if reason else "") or STOCKTAKE_REASON,
            notes=notes,
        )

    return _run(_op, commit)


# =============================================================================
# Queries
# =============================================================================

def report_transactions(filt: StockReportFilter) -> tuple[list[StockTransaction], int]:
    query = db.session.query(StockTransaction)

    if filt.search:
        pattern = f"%{filt.search}%"
        query = query.filter(
            or_(
                StockTransaction.product_code.ilike(pattern),
                StockTransaction.product_name.ilike(pattern),
                StockTransaction.reason.ilike(pattern),
                StockTransaction.user_name.ilike(pattern),
            )
        )
    if filt.transaction_type:
        query = query.filter(StockTransaction.transaction_type == filt.transaction_type)
    if filt.product_id:
        query = query.filter(StockTransaction.product_id == filt.product_id)

    start, end = filt.period.bounds()
    if start is not None:
        query = query.filter(StockTransaction.transaction_date >= start)
    if end is not None:
        query = query.filter(StockTransaction.transaction_date < end)

    total = query.count()
    rows = (
        query.order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc())
        .offset(filt.page.offset)
        .limit(filt.page.limit)
        .all()
    )
    return rows, total


def history_for_product(product_id: int) -> list[StockTransaction]:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return (
        db.session.query(StockTransaction)
        .filter(StockTransaction.product_id == product_id)
        .order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc())
        .all()
    )


def summary() -> dict:
    total_products = db.session.query(func.count(Product.id)).scalar() or 0
    low_stock = (
        db.session.query(func.count(Product.id))
        .filter(Product.stock_quantity <= Product.min_stock)
        .scalar()
        or 0
    )
    stock_value = (
        db.session.query(func.coalesce(func.sum(Product.stock_quantity * Product.avg_import_price), 0))
        .scalar()
    )
    return {
        "total_products": total_products,
        "low_stock_products": low_stock,
        "total_stock_value": float(stock_value or 0),
    }


def ledger_balance(product_id: int) -> int:
    """Sum of signed quantities recorded for a product."""
    return int(
        db.session.query(func.coalesce(func.sum(StockTransaction.quantity), 0))
        .filter(StockTransaction.product_id == product_id)
        .scalar()
    )
