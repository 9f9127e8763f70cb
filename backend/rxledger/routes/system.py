# backend/rxledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and row counts of the main ledger tables.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import AssignmentLine, SaleTransaction, StockBatch

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        batch_count = db.session.query(StockBatch).count()
        line_count = db.session.query(AssignmentLine).count()
        transaction_count = db.session.query(SaleTransaction).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stock_batches": batch_count,
                "assignment_lines": line_count,
                "sale_transactions": transaction_count,
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


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = "healthy" if database["status"] == "healthy" else "unhealthy"
    code = 200 if status == "healthy" else 503
    return jsonify({"status": status, "checks": {"database": database}}), code
