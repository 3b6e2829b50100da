# Overview: Password hashing and credential checks.

"""
Authentication

- Passwords hashed with bcrypt (cost factor 12)
- Minimum length enforced by validate_password before hashing
- Session tokens are managed separately (see session_service.py)
"""

from __future__ import annotations

import logging

import bcrypt

from ..extensions import db
from ..models import User
from ..time_utils import utcnow
from ..validation import validate_password

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Validate then hash; raises ValidationError for a too-short password."""
    validate_password(password)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def authenticate(username: str, password: str) -> User | None:
    """
    Check credentials of an active user.

    Returns the user and stamps last_login_at on success, None otherwise.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info("Failed login for username=%r", username)
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
