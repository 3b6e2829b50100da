# Overview: Health and version endpoints.
"""
System health and version endpoints.

/health runs three checks: database reachability, session table, and whether
`flask system init` has created the built-in rows (system user, retail agent,
walk-in customer). Only the first two can make the service unhealthy.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Agent, Customer, Product, SessionToken, User
from ..models.customers import DEFAULT_AGENT_KEY, DEFAULT_CUSTOMER_KEY
from ..services.actor import SYSTEM_USERNAME
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def _timed(label: str, probe) -> dict:
    """Run `probe()` and wrap its details with status and latency."""
    started = time.perf_counter()
    try:
        details = probe()
        status = "healthy"
        error = None
    except Exception:
        current_app.logger.exception("Health check %r failed", label)
        db.session.rollback()
        details, status, error = None, "unhealthy", f"{label} error"

    result = {"status": status, "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
    if details is not None:
        result["details"] = details
    if error:
        result["error"] = error
    return result


def _database() -> dict:
    return {
        "products": db.session.query(Product).count(),
        "users": db.session.query(User).filter(User.username != SYSTEM_USERNAME).count(),
    }


def _sessions() -> dict:
    now = utcnow()
    live = db.session.query(SessionToken).filter(SessionToken.is_revoked.is_(False))
    return {
        "active_sessions": live.filter(SessionToken.expires_at >= now).count(),
        "expired_pending_cleanup": live.filter(SessionToken.expires_at < now).count(),
    }


def _bootstrap() -> dict:
    return {
        "system_user": db.session.query(User.id).filter_by(username=SYSTEM_USERNAME).first() is not None,
        "default_agent": db.session.query(Agent.id).filter_by(system_key=DEFAULT_AGENT_KEY).first() is not None,
        "default_customer": (
            db.session.query(Customer.id).filter_by(system_key=DEFAULT_CUSTOMER_KEY).first() is not None
        ),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database and sessions healthy
    - 503: either of them unhealthy
    """
    checks = {
        "database": _timed("Database", _database),
        "session_service": _timed("Session service", _sessions),
        "bootstrap": _timed("Bootstrap", _bootstrap),
    }
    critical = (checks["database"], checks["session_service"])
    healthy = all(c["status"] == "healthy" for c in critical)

    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }, 200 if healthy else 503


@system_bp.get("/version")
def version():
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
