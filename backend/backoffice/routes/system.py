# backend/backoffice/routes/system.py
"""
System health endpoint.

Reports database connectivity for load balancers and deployment checks.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text
from ..extensions import db
from backoffice.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def _check_database() -> dict:
    """One SELECT 1 round trip, timed."""
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": "Database error",
        }
    return {
        "status": "healthy",
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": {"dialect": db.engine.dialect.name},
    }


@system_bp.get("/health")
def health():
    """200 when the database answers, 503 otherwise."""
    database = _check_database()
    body = {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return body, 200 if database["status"] == "healthy" else 503
