# Overview: Flask API routes for back-office user accounts.

"""
User management routes.

Any authenticated user may list and view accounts; creating and deleting
requires the admin role. Non-admins may only update their own profile fields.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..extensions import db
from ..models import User
from ..services import users_service
from ..validation import (
    ModelValidationPolicy,
    USER_ROLES,
    ValidationError,
    enforce_rules_user,
    parse_bool_arg,
    parse_search_args,
    validate_payload,
)
from ..decorators import require_auth, require_role

USER_POLICY = ModelValidationPolicy(
    writable_fields={"username", "email", "full_name", "phone", "role", "is_active"},
    required_on_create={"username", "full_name"},
)

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _split_password(payload: dict) -> tuple[dict, str | None]:
    payload = dict(payload)
    password = payload.pop("password", None)
    return payload, password


@users_bp.get("")
@require_auth
def list_users_route():
    """
    Query params:
    - search: matches username or full name
    - role: admin | employee
    - is_active: true | false
    - page, limit
    """
    search, page = parse_search_args(request.args)
    role = request.args.get("role") or None
    if role is not None and role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    return users_service.list_users(
        search=search,
        role=role,
        is_active=parse_bool_arg(request.args, "is_active"),
        page=page,
    )


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    return {"user": users_service.get_user(user_id).to_dict()}


@users_bp.post("")
@require_auth
@require_role("admin")
def create_user_route():
    payload, password = _split_password(request.get_json(silent=True) or {})
    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=False)
        enforce_rules_user(patch)
        if password is None:
            raise ValidationError("password is required")
        user = users_service.create_user(patch=patch, password=password, actor=g.actor)
        return jsonify({"user": user.to_dict()}), 201
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.route("/<int:user_id>", methods=["PATCH", "PUT"])
@require_auth
def update_user_route(user_id: int):
    payload, password = _split_password(request.get_json(silent=True) or {})
    try:
        patch = validate_payload(model=User, payload=payload, policy=USER_POLICY, partial=True)
        enforce_rules_user(patch)
        user = users_service.update_user(user_id=user_id, patch=patch, actor=g.actor, password=password)
        return jsonify({"user": user.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role("admin")
def delete_user_route(user_id: int):
    try:
        users_service.delete_user(user_id=user_id, actor=g.actor)
        return jsonify({"ok": True}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500
