# backend/caja/routes/system.py
"""
System health endpoint.

Checks the backing store and the local print server. The print server is
optional: when it is down the register still takes payments, so it can only
degrade the overall status, never make it unhealthy.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Shift, Order, Setting
from ..models.shifts import SHIFT_STATUS_OPEN
from ..services import print_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        open_shifts = db.session.query(Shift).filter_by(status=SHIFT_STATUS_OPEN).count()
        order_count = db.session.query(Order).count()
        settings_count = db.session.query(Setting).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "open_shifts": open_shifts,
                "orders": order_count,
                "settings_seeded": settings_count > 0,
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


def check_print_server_health() -> dict:
    start_time = time.time()
    result = print_service.check_print_server()
    elapsed_ms = (time.time() - start_time) * 1000

    status = result.get("status")
    if status == "ok":
        check_status = "healthy"
    elif status == "disabled":
        check_status = "disabled"
    else:
        check_status = "degraded"

    body = {"status": check_status, "latency_ms": round(elapsed_ms, 2)}
    if result.get("error"):
        body["warning"] = result["error"]
    return body


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database healthy (print server may be degraded or disabled)
    - 503: database unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    print_health = check_print_server_health()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif print_health["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "print_server": print_health,
        }
    }

    return response, http_status
