# backend/backoffice/routes/system.py
"""
System health and version endpoints.

Health covers the database and the outbox backlog, since a growing backlog
means safe postings are not reaching the ledger.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError
from ..extensions import db
from ..models import OutboxEvent, User
from backoffice.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count},
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_outbox_health() -> dict:
    """
    Pending events are normal for a moment after a request; FAILED events
    need an operator (`flask outbox failed`).
    """
    try:
        pending = db.session.query(OutboxEvent).filter_by(status="PENDING").count()
        failed = db.session.query(OutboxEvent).filter_by(status="FAILED").count()
    except SQLAlchemyError:
        current_app.logger.exception("Outbox health check failed")
        return {"status": "unhealthy", "error": "Outbox error"}

    return {
        "status": "degraded" if failed else "healthy",
        "details": {"pending": pending, "failed": failed},
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    outbox_health = check_outbox_health() if database_health["status"] == "healthy" else {
        "status": "unhealthy", "error": "Database unavailable",
    }

    all_checks = [database_health, outbox_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "outbox": outbox_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    """
    Non-sensitive deployment information.
    """
    return {
        "api_version": "1.0.0",
        "environment": current_app.config.get("APP_ENV"),
        "branches": list(current_app.config["BRANCHES"]),
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
