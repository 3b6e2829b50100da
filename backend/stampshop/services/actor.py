# Overview: Identity of the user performing a mutating service call.

from __future__ import annotations

import logging
from dataclasses import dataclass

import bcrypt

from ..extensions import db
from ..models import User

logger = logging.getLogger(__name__)

SYSTEM_USERNAME = "system"


@dataclass(frozen=True)
class Actor:
    """Already-authenticated (actor_id, actor_name, role) triple."""
    user_id: int
    name: str
    role: str = "employee"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, name=user.full_name or user.username, role=user.role)


def ensure_system_user() -> User:
    """
    Return the built-in `system` user, creating it on first use.

    The account is inactive with an unusable password hash, so it can never
    log in; it only attributes server-initiated stock movements.
    """
    user = db.session.query(User).filter_by(username=SYSTEM_USERNAME).first()
    if user is not None:
        return user

    user = User(
        username=SYSTEM_USERNAME,
        full_name="System",
        role="admin",
        is_active=False,
        password_hash=bcrypt.hashpw(bcrypt.gensalt().hex().encode("utf-8"), bcrypt.gensalt()).decode("utf-8"),
    )
    db.session.add(user)
    db.session.flush()
    logger.info("Created built-in system user id=%s", user.id)
    return user


def system_actor() -> Actor:
    user = ensure_system_user()
    return Actor(user_id=user.id, name="System", role="admin")
