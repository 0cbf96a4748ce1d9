# backend/localmart/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import Bargain, SettlementTransaction
from ..models.bargains import ACTIVE_BARGAIN_STATUSES
from ..models.settlement import SETTLEMENT_HELD
from localmart.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and report the backlog the sweeps work on.
    """
    start_time = time.time()
    try:
        active_bargains = db.session.query(Bargain).filter(
            Bargain.status.in_(ACTIVE_BARGAIN_STATUSES)
        ).count()
        held_settlements = db.session.query(SettlementTransaction).filter_by(
            status=SETTLEMENT_HELD
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_bargains": active_bargains,
                "held_settlements": held_settlements,
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


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), status_code
