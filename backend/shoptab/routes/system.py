# Overview: Health and version endpoints.

"""
System health and version endpoints.

Reports database reachability plus a few counters that help when
debugging a deployment (open carts, orders, credit accounts, sessions).
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Cart, CreditAccount, Order, SessionToken
from ..models.cart import CART_STATUS_ACTIVE
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "active_carts": db.session.query(Cart).filter(Cart.status == CART_STATUS_ACTIVE).count(),
            "orders": db.session.query(Order).count(),
            "credit_accounts": db.session.query(CreditAccount).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        live = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": {"live_sessions": live}}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Session service error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    start_time = time.time()
    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
    }
    unhealthy = any(c["status"] == "unhealthy" for c in checks.values())

    response = {
        "status": "unhealthy" if unhealthy else "healthy",
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "notifications_enabled": bool(current_app.config.get("NOTIFICATIONS_ENABLED", True)),
        "checks": checks,
    }
    return response, 503 if unhealthy else 200


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
