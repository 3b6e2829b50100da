# Overview: Flask API routes for product categories.

from flask import Blueprint, request, jsonify, current_app

from ..errors import ServiceError
from ..extensions import db
from ..models import Category
from ..services import categories_service
from ..validation import ModelValidationPolicy, validate_payload, parse_search_args
from ..decorators import require_auth

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    search, page = parse_search_args(request.args)
    return categories_service.list_categories(search=search, page=page)


@categories_bp.get("/active")
@require_auth
def active_categories_route():
    items = categories_service.list_active_categories()
    return {"items": items, "count": len(items)}


@categories_bp.get("/<int:category_id>")
@require_auth
def get_category_route(category_id: int):
    category = categories_service.get_category(category_id)
    return {"category": categories_service.category_to_dict(category)}


@categories_bp.post("")
@require_auth
def create_category_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
        category = categories_service.create_category(patch=patch)
        return jsonify({"category": categories_service.category_to_dict(category)}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.route("/<int:category_id>", methods=["PUT", "PATCH"])
@require_auth
def update_category_route(category_id: int):
    """Renaming cascades the new name to every product in the category."""
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
        category = categories_service.update_category(category_id=category_id, patch=patch)
        return jsonify({"category": categories_service.category_to_dict(category)}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.delete("/<int:category_id>")
@require_auth
def delete_category_route(category_id: int):
    try:
        categories_service.delete_category(category_id=category_id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete category")
        return jsonify({"error": "Internal server error"}), 500
