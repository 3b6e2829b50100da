# Overview: Back-office user accounts; admin-gated management with last-admin protection.

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..extensions import db
from ..models import Order, StockTransaction, User
from ..validation import Page
from . import session_service
from .actor import SYSTEM_USERNAME, Actor
from .auth_service import hash_password, verify_password
from .listing import paginate_query

logger = logging.getLogger(__name__)

USER_MUTABLE_FIELDS = {"username", "email", "full_name", "phone", "role", "is_active"}
# Fields a non-admin may change on their own account
SELF_MUTABLE_FIELDS = {"email", "full_name", "phone"}


def _visible():
    return db.session.query(User).filter(User.username != SYSTEM_USERNAME)


def list_users(*, search: str | None, role: str | None, is_active: bool | None, page: Page) -> dict:
    query = _visible()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.full_name.ilike(pattern), User.username.ilike(pattern)))
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    query = query.order_by(User.created_at.desc(), User.id.desc())
    return paginate_query(query, page)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None or user.username == SYSTEM_USERNAME:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


def _active_admin_count() -> int:
    return (
        _visible()
        .with_entities(func.count(User.id))
        .filter(User.role == "admin", User.is_active.is_(True))
        .scalar()
        or 0
    )


def _check_unique(patch: dict, exclude_id: int | None = None) -> None:
    for field in ("username", "email"):
        value = patch.get(field)
        if not value:
            continue
        query = db.session.query(User.id).filter(getattr(User, field) == value)
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"{field} already exists", {field: value})


def create_user(*, patch: dict, password: str, actor: Actor | None, commit: bool = True) -> User:
    """Admin-only. `actor=None` is reserved for bootstrap and the CLI."""
    if actor is not None and not actor.is_admin:
        raise ForbiddenError("Admin role required")
    if patch.get("username") == SYSTEM_USERNAME:
        raise ConflictError("username is reserved", {"username": SYSTEM_USERNAME})
    _check_unique(patch)

    user = User(**{k: v for k, v in patch.items() if k in USER_MUTABLE_FIELDS})
    user.password_hash = hash_password(password)
    db.session.add(user)
    if commit:
        db.session.commit()
    logger.info("Created user id=%s username=%s role=%s", user.id, user.username, user.role)
    return user


def update_user(*, user_id: int, patch: dict, actor: Actor, password: str | None = None) -> User:
    """
    Admins may update anyone; other users only their own profile fields.

    The last active admin can be neither demoted nor deactivated. Changing the
    password or deactivating revokes the user's sessions.
    """
    user = get_user(user_id)
    if not actor.is_admin:
        if actor.user_id != user.id:
            raise ForbiddenError("Admin role required")
        forbidden = sorted(set(patch) - SELF_MUTABLE_FIELDS)
        if forbidden:
            raise ForbiddenError("Admin role required", {"fields": forbidden})

    losing_admin = user.is_admin and user.is_active and (
        patch.get("is_active") is False or patch.get("role", "admin") != "admin"
    )
    if losing_admin and _active_admin_count() <= 1:
        raise ForbiddenError("Cannot deactivate or demote the last active admin")

    _check_unique(patch, exclude_id=user.id)
    for key, value in patch.items():
        if key in USER_MUTABLE_FIELDS:
            setattr(user, key, value)

    if password is not None:
        user.password_hash = hash_password(password)
    if password is not None or patch.get("is_active") is False:
        session_service.revoke_all_user_sessions(user.id, "Credentials changed", commit=False)

    db.session.commit()
    return user


def change_own_password(*, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise ForbiddenError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()


def _has_history(user_id: int) -> bool:
    if db.session.query(StockTransaction.id).filter(StockTransaction.user_id == user_id).first():
        return True
    return db.session.query(Order.id).filter(
        or_(Order.created_by_user_id == user_id, Order.updated_by_user_id == user_id)
    ).first() is not None


def delete_user(*, user_id: int, actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("Admin role required")
    if actor.user_id == user_id:
        raise ForbiddenError("Cannot delete your own account")

    user = get_user(user_id)
    if user.is_admin and user.is_active and _active_admin_count() <= 1:
        raise ForbiddenError("Cannot delete the last active admin")
    if _has_history(user.id):
        raise ConflictError("User has recorded orders or stock movements; deactivate instead", {"user_id": user.id})

    username = user.username
    db.session.delete(user)
    db.session.commit()
    logger.info("Deleted user id=%s username=%s by user_id=%s", user_id, username, actor.user_id)


def ensure_default_admin(username: str, password: str) -> User | None:
    """Create an admin account if none exists; returns the new user, or None."""
    exists = _visible().filter(User.role == "admin").first()
    if exists is not None:
        return None
    return create_user(
        patch={"username": username, "full_name": "Administrator", "role": "admin", "is_active": True},
        password=password,
        actor=None,
    )
