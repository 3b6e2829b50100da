# Overview: Flask API routes for login, logout and the caller's own profile.

"""
Authentication API routes

- Accounts are created by admins only (POST /api/users or `flask users create`)
- Login returns an opaque bearer token; send it as `Authorization: Bearer <token>`
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..extensions import db
from ..models import User
from ..services import auth_service
from ..services import session_service
from ..services import users_service
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_contact
from ..decorators import require_auth, bearer_token


PROFILE_POLICY = ModelValidationPolicy(writable_fields={"email", "full_name", "phone"})

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    return jsonify({
        "error": "Self-registration is disabled. Contact an administrator to create an account."
    }), 403


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Returns user info and the plaintext token; only its hash is stored.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username and password required", "kind": "validation_error"}), 400

        user = auth_service.authenticate(str(username).strip(), str(password))
        if not user:
            return jsonify({"error": "Invalid credentials", "kind": "unauthorized"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token(), reason="User logout")
    return jsonify({"message": "Logout successful"}), 200


@auth_bp.post("/logout-all")
@require_auth
def logout_all_route():
    count = session_service.revoke_all_user_sessions(g.current_user.id, reason="User logout (all devices)")
    return jsonify({"revoked": count}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "session": g.session_context.session.to_dict(),
    }), 200


@auth_bp.get("/profile")
@require_auth
def profile_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.patch("/profile")
@require_auth
def update_profile_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=User, payload=payload, policy=PROFILE_POLICY, partial=True)
        enforce_rules_contact(patch)
        user = users_service.update_user(user_id=g.current_user.id, patch=patch, actor=g.actor)
        return jsonify({"user": user.to_dict()}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update profile")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    """Change own password; every other session of the user is revoked."""
    data = request.get_json(silent=True) or {}
    try:
        users_service.change_own_password(
            user=g.current_user,
            current_password=data.get("current_password") or "",
            new_password=data.get("new_password"),
        )
        session_service.revoke_all_user_sessions(
            g.current_user.id, "Password changed", keep_session_id=g.session_context.session.id
        )
        return jsonify({"message": "Password changed"}), 200
    except ServiceError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to change password")
        return jsonify({"error": "Internal server error"}), 500
