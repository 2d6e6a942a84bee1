# backend/shopdesk/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether invoice storage is writable, for
load balancers and deployment checks.
"""

import os
import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from ..extensions import db
from ..services.storage_service import LocalObjectStorage, get_storage
from shopdesk.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_storage_health() -> dict:
    storage = get_storage()
    if not isinstance(storage, LocalObjectStorage):
        return {"status": "healthy", "backend": type(storage).__name__}

    root = storage.root
    writable = os.access(root, os.W_OK) if os.path.isdir(root) else os.access(os.path.dirname(root) or ".", os.W_OK)
    return {
        "status": "healthy" if writable else "unhealthy",
        "backend": "local",
        "root": root,
    }


@system_bp.get("/health")
def health():
    checks = {
        "database": check_database_health(),
        "storage": check_storage_health(),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "checks": checks,
        "timestamp": to_utc_z(utcnow()),
    }), 200 if healthy else 503
