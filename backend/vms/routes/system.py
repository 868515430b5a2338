# backend/vms/routes/system.py
"""
System health endpoint.

Checks the Visit Record Store (database) and reports basic row counts for
deployment debugging.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func, select

from ..constants import STATUS_CHECKED_IN
from ..extensions import db
from ..models import User, Visit, Visitor
from vms.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic queries.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.scalar(select(func.count()).select_from(User))
        visitor_count = db.session.scalar(select(func.count()).select_from(Visitor))
        visit_count = db.session.scalar(select(func.count()).select_from(Visit))
        on_site = db.session.scalar(
            select(func.count()).select_from(Visit).where(Visit.status == STATUS_CHECKED_IN)
        )

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "visitors": visitor_count,
                "visits": visit_count,
                "visitors_on_site": on_site,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_pass_codec_health() -> dict:
    """The pass codec needs a non-empty signing secret."""
    secret = current_app.config.get("PASS_QR_SECRET")
    if not secret:
        return {"status": "unhealthy", "error": "PASS_QR_SECRET is not configured"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    codec_health = check_pass_codec_health()

    all_checks = [database_health, codec_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "pass_codec": codec_health,
        }
    }

    return response, http_status
