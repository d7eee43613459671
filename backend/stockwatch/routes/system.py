# Overview: System endpoints: health check and the caller's edit/return allowance.

import time

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth
from ..extensions import db
from ..models import AuditLog, Product, User
from ..services import quota_service

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        user_count = db.session.query(User).count()
        audit_count = db.session.query(AuditLog).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "users": user_count,
                "audit_entries": audit_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = database["status"]
    body = {
        "status": status,
        "timezone": current_app.config.get("STORE_TIMEZONE"),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if status == "healthy" else 503


@system_bp.get("/edit-count")
@require_auth
def edit_count():
    """Today's quota usage for the caller: {count, limit, can_edit}."""
    user = g.current_user
    return jsonify(quota_service.quota_status(user.id, user.role))
