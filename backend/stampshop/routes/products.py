# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

"""
Product catalog routes.

Stock fields (stock_quantity, avg_import_price) are read-only here; they move
only through /api/stock and order operations.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import ServiceError
from ..extensions import db
from ..models import Product
from ..services import products_service
from ..services.products_service import PRODUCT_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_bool_arg,
    parse_limit_arg,
    parse_search_args,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS,
    required_on_create={"code", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - search: matches code, name or category
    - include_inactive: true to list soft-deleted products too
    - page, limit
    """
    search, page = parse_search_args(request.args)
    return products_service.list_products(
        search=search,
        page=page,
        include_inactive=bool(parse_bool_arg(request.args, "include_inactive")),
    )


@products_bp.get("/low-stock")
@require_auth
def low_stock_products():
    products = products_service.find_low_stock()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/top-selling")
@require_auth
def top_selling_products():
    limit = parse_limit_arg(request.args, default=10)
    return {"items": products_service.top_selling_products(limit)}


@products_bp.get("/code/<string:code>")
@require_auth
def get_product_by_code(code: str):
    return {"product": products_service.get_product_by_code(code).to_dict()}


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    return {"product": products_service.get_product(product_id).to_dict()}


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
        return jsonify({"product": created.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.route("/<int:product_id>", methods=["PUT", "PATCH"])
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
        return jsonify({"product": updated.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, its history stays."""
    try:
        products_service.delete_product(product_id=product_id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
