# Overview: Flask API routes for stock intake, manual adjustments and the stock ledger.

"""
Stock ledger routes.

Every change of a product's stock goes through here or through order
operations, and leaves one stock_transactions row behind.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..extensions import db
from ..models import StockTransaction
from ..services import stock_service
from ..services.listing import paginated
from ..validation import (
    ModelValidationPolicy,
    StockReportFilter,
    ValidationError,
    validate_payload,
)
from ..decorators import require_auth

IMPORT_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "unit_price", "reason", "notes"},
    required_on_create={"quantity", "unit_price"},
)
ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "reason", "notes"},
    required_on_create={"quantity", "reason"},
)

COUNT_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "reason", "notes"},
    required_on_create={"quantity"},
)

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _take_product_code(payload: dict) -> tuple[str, dict]:
    payload = dict(payload)
    code = payload.pop("product_code", None)
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("product_code is required")
    return code.strip(), payload


@stock_bp.post("/import")
@require_auth
def import_stock_route():
    """
    Receive stock for a product by code.

    Body: product_code, quantity (> 0), unit_price (>= 0), optional reason/notes.
    The weighted average import price is recomputed.
    """
    try:
        code, payload = _take_product_code(request.get_json(silent=True) or {})
        patch = validate_payload(model=StockTransaction, payload=payload, policy=IMPORT_POLICY, partial=False)
        tx = stock_service.import_stock(
            code=code,
            quantity=patch["quantity"],
            unit_price=patch["unit_price"],
            actor=g.actor,
            reason=patch.get("reason"),
            notes=patch.get("notes"),
        )
        return jsonify({"transaction": tx.to_dict(), "product": tx.product.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjust")
@require_auth
def adjust_stock_route():
    """Body: product_code, quantity (signed, non-zero), reason, optional notes."""
    try:
        code, payload = _take_product_code(request.get_json(silent=True) or {})
        patch = validate_payload(model=StockTransaction, payload=payload, policy=ADJUST_POLICY, partial=False)
        tx = stock_service.adjust_stock(
            code=code,
            quantity=patch["quantity"],
            reason=patch.get("reason"),
            actor=g.actor,
            notes=patch.get("notes"),
        )
        return jsonify({"transaction": tx.to_dict(), "product": tx.product.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/count")
@require_auth
def count_stock_route():
    """Stocktake. Body: product_code, quantity (counted, >= 0), optional reason/notes."""
    try:
        code, payload = _take_product_code(request.get_json(silent=True) or {})
        patch = validate_payload(model=StockTransaction, payload=payload, policy=COUNT_POLICY, partial=False)
        tx = stock_service.count_stock(
            code=code,
            counted_quantity=patch["quantity"],
            actor=g.actor,
            reason=patch.get("reason"),
            notes=patch.get("notes"),
        )
        return jsonify({"transaction": tx.to_dict(), "product": tx.product.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record stock count")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/report")
@require_auth
def stock_report_route():
    """
    Query params:
    - transaction_type: import | export | adjustment
    - product_id
    - search: product code/name, reason or user
    - start_date, end_date (YYYY-MM-DD, Vietnam local, inclusive) or period preset
    - page, limit
    """
    filt = StockReportFilter.from_args(request.args)
    rows, total = stock_service.report_transactions(filt)
    return paginated([tx.to_dict() for tx in rows], total, filt.page)


@stock_bp.get("/summary")
@require_auth
def stock_summary_route():
    return stock_service.summary()


@stock_bp.get("/products/<int:product_id>/history")
@require_auth
def product_history_route(product_id: int):
    rows = stock_service.history_for_product(product_id)
    return {
        "items": [tx.to_dict() for tx in rows],
        "count": len(rows),
        "ledger_balance": stock_service.ledger_balance(product_id),
    }
