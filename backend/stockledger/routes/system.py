# backend/stockledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and a quick ledger consistency check for
deployment debugging. Needs no principal.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import LedgerEntry, QuantityBucket, StockOut, Unit
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "units": db.session.query(Unit).count(),
            "quantity_buckets": db.session.query(QuantityBucket).count(),
            "stock_outs": db.session.query(StockOut).count(),
            "ledger_entries": db.session.query(LedgerEntry).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 200 if healthy else 503
