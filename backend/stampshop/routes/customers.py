# Overview: Flask API routes for customers.

from flask import Blueprint, request, jsonify, current_app

from ..errors import ServiceError
from ..extensions import db
from ..models import Customer
from ..services import customers_service
from ..services.customers_service import CUSTOMER_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_contact,
    parse_search_args,
    validate_payload,
)
from ..decorators import require_auth

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=CUSTOMER_MUTABLE_FIELDS | {"agent_id"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


def _validated(partial: bool) -> tuple[dict, int | None]:
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=partial)
    enforce_rules_contact(patch)
    agent_id = patch.pop("agent_id", None)
    return patch, agent_id


@customers_bp.get("")
@require_auth
def list_customers_route():
    """Paginated customers with their active-order count and total."""
    search, page = parse_search_args(request.args)
    return customers_service.list_customers(search=search, page=page)


@customers_bp.get("/search")
@require_auth
def search_customers_route():
    keyword = (request.args.get("q") or "").strip()
    customers = customers_service.search_customers(keyword) if keyword else []
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/stats")
@require_auth
def customer_stats_route():
    return customers_service.customer_stats()


@customers_bp.get("/by-agent/<int:agent_id>")
@require_auth
def customers_by_agent_route(agent_id: int):
    customers = customers_service.customers_by_agent(agent_id)
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    return {"customer": customers_service.get_customer(customer_id).to_dict()}


@customers_bp.post("")
@require_auth
def create_customer_route():
    """Without agent_id the customer is attached to the built-in retail agent."""
    try:
        patch, agent_id = _validated(partial=False)
        customer = customers_service.create_customer(patch=patch, agent_id=agent_id)
        return jsonify({"customer": customer.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.route("/<int:customer_id>", methods=["PUT", "PATCH"])
@require_auth
def update_customer_route(customer_id: int):
    try:
        patch, agent_id = _validated(partial=True)
        customer = customers_service.update_customer(customer_id=customer_id, patch=patch, agent_id=agent_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    try:
        customers_service.delete_customer(customer_id=customer_id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500
