# Overview: Flask API routes for consignment periods; open, summary, close and roll-forward.

# backend/rxledger/routes/consignments.py
"""
Consignment Period API Routes

Periods are addressed as "YYYY-MM" in the URL.
"""

from flask import Blueprint, jsonify

from ..errors import LedgerError
from ..extensions import db
from ..services import consignment_service
from ..validation import require_fields
from .common import error_response, json_body, ledger_settings, optional_json_body, server_error


consignments_bp = Blueprint("consignments", __name__, url_prefix="/api/consignments")


@consignments_bp.get("/<int:party_id>/periods")
def list_periods_route(party_id: int):
    try:
        periods = consignment_service.list_periods(db.session, party_id=party_id)
        return jsonify({"periods": [p.to_dict() for p in periods]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list consignment periods")


@consignments_bp.post("/<int:party_id>/periods")
def open_period_route(party_id: int):
    """Request body: {"period": "2024-03"}"""
    try:
        data = json_body()
        require_fields(data, "period")
        row = consignment_service.open_period(
            db.session,
            party_id=party_id,
            period=data.get("period"),
            settings=ledger_settings(),
        )
        return jsonify({"period": row.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to open consignment period")


@consignments_bp.get("/<int:party_id>/periods/<period>")
def period_summary_route(party_id: int, period: str):
    try:
        summary = consignment_service.period_summary(db.session, party_id=party_id, period=period)
        return jsonify(summary), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to build consignment summary")


@consignments_bp.post("/<int:party_id>/periods/<period>/close")
def close_period_route(party_id: int, period: str):
    try:
        data = optional_json_body()
        row = consignment_service.close_period(
            db.session,
            party_id=party_id,
            period=period,
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify({"period": row.to_dict()}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to close consignment period")


@consignments_bp.post("/<int:party_id>/roll-forward")
def roll_forward_route(party_id: int):
    """
    Carry unsold balances into a later month (closes the source month).

    Request body: {"from_period": "2024-03", "to_period": "2024-04", "note": "..."}
    """
    try:
        data = json_body()
        require_fields(data, "from_period", "to_period")
        row = consignment_service.roll_period_forward(
            db.session,
            party_id=party_id,
            from_period=data.get("from_period"),
            to_period=data.get("to_period"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify({"period": row.to_dict(include_lines=True)}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to roll consignment forward")
