# backend/freshledger/routes/system.py
"""
System health and version endpoints.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import DayStatus, StockItem
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        stock_item_count = db.session.query(StockItem).count()
        open_days = db.session.query(DayStatus).filter_by(is_ended=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_items": stock_item_count,
                "open_days": open_days,
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


def check_scheduler_health() -> dict:
    scheduler = current_app.extensions.get("expiry_scheduler")
    if not current_app.config.get("EXPIRY_SWEEP_ENABLED"):
        return {"status": "healthy", "details": {"enabled": False}}
    running = bool(scheduler and scheduler.scheduler and scheduler.scheduler.running)
    return {
        "status": "healthy" if running else "degraded",
        "details": {"enabled": True, "running": running},
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (scheduler enabled but not running)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    scheduler_health = check_scheduler_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif scheduler_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "expiry_scheduler": scheduler_health,
        }
    }
    return response, http_status


@system_bp.get("/version")
def version():
    import sys

    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
