# Overview: Flask API routes for agents (resale partners).

from flask import Blueprint, request, jsonify, current_app

from ..errors import ServiceError
from ..extensions import db
from ..models import Agent
from ..services import agents_service
from ..services.agents_service import AGENT_MUTABLE_FIELDS
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_contact,
    parse_search_args,
    validate_payload,
)
from ..decorators import require_auth

AGENT_POLICY = ModelValidationPolicy(
    writable_fields=AGENT_MUTABLE_FIELDS,
    required_on_create={"name", "phone"},
)

agents_bp = Blueprint("agents", __name__, url_prefix="/api/agents")


@agents_bp.get("")
@require_auth
def list_agents_route():
    """Paginated agents with their active-order count and total."""
    search, page = parse_search_args(request.args)
    return agents_service.list_agents(search=search, page=page)


@agents_bp.get("/search")
@require_auth
def search_agents_route():
    keyword = (request.args.get("q") or "").strip()
    agents = agents_service.search_agents(keyword) if keyword else []
    return {"items": [a.to_dict() for a in agents], "count": len(agents)}


@agents_bp.get("/<int:agent_id>")
@require_auth
def get_agent_route(agent_id: int):
    return {"agent": agents_service.get_agent(agent_id).to_dict()}


@agents_bp.post("")
@require_auth
def create_agent_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Agent, payload=payload, policy=AGENT_POLICY, partial=False)
        enforce_rules_contact(patch, phone_required=True)
        agent = agents_service.create_agent(patch=patch)
        return jsonify({"agent": agent.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create agent")
        return jsonify({"error": "Internal server error"}), 500


@agents_bp.route("/<int:agent_id>", methods=["PUT", "PATCH"])
@require_auth
def update_agent_route(agent_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Agent, payload=payload, policy=AGENT_POLICY, partial=True)
        enforce_rules_contact(patch, phone_required=True)
        agent = agents_service.update_agent(agent_id=agent_id, patch=patch)
        return jsonify({"agent": agent.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update agent")
        return jsonify({"error": "Internal server error"}), 500


@agents_bp.delete("/<int:agent_id>")
@require_auth
def delete_agent_route(agent_id: int):
    """Refused for the built-in retail agent and for agents with customers or orders."""
    try:
        agents_service.delete_agent(agent_id=agent_id)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete agent")
        return jsonify({"error": "Internal server error"}), 500
