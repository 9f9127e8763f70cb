# Overview: Flask API routes for the stock pool; receipt, listing, allocation, removal and summaries.

# backend/rxledger/routes/stock.py
"""
Stock Pool API Routes

DESIGN:
- Receive batches (lot number, manufacture/expiry dates, unit cost)
- List available batches in FIFO order
- Allocate oldest-first (all or nothing)
- Remove or transfer stock by hand (DAMAGE, EXPIRED, LOST, TRANSFER)
- On-hand / available / expired summary and movement audit
"""

from flask import Blueprint, jsonify, request

from ..errors import LedgerError
from ..extensions import db
from ..services import allocation_service, stock_service
from ..validation import optional_bool, optional_date, optional_int, require_int
from .common import error_response, json_body, ledger_settings, server_error


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/batches")
def receive_batch_route():
    """
    Receive a batch.

    Request body:
    {
        "product_id": 1,
        "location_id": 1,
        "quantity": 100,
        "unit_cost_cents": 250,
        "batch_no": "LOT-2024-001",         (optional)
        "manufactured_on": "2024-01-01",    (optional)
        "expires_on": "2026-01-01",         (optional)
        "supplier_reference": "DR-5521"     (optional)
    }
    """
    try:
        data = json_body()
        batch = stock_service.receive_stock(
            db.session,
            product_id=require_int(data, "product_id"),
            location_id=require_int(data, "location_id"),
            quantity=data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents", 0),
            batch_no=data.get("batch_no"),
            manufactured_on=optional_date(data.get("manufactured_on"), "manufactured_on"),
            expires_on=optional_date(data.get("expires_on"), "expires_on"),
            supplier_reference=data.get("supplier_reference"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify({"batch": batch.to_dict()}), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to receive stock")


@stock_bp.get("/batches")
def list_batches_route():
    """
    Available batches, oldest first.

    Query params: product_id, location_id (required), include_expired (default false)
    """
    try:
        include_expired = optional_bool(request.args.get("include_expired"), "include_expired") or False
        batches = stock_service.list_available(
            db.session,
            product_id=require_int(request.args, "product_id"),
            location_id=require_int(request.args, "location_id"),
            exclude_expired=not include_expired,
        )
        return jsonify({"batches": [b.to_dict() for b in batches]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list batches")


@stock_bp.post("/allocate")
def allocate_route():
    """
    FIFO-allocate stock.

    Request body: {"product_id": 1, "location_id": 1, "quantity": 8, "reference": "..."}

    Returns:
        201: allocation lines, oldest batch first
        409: INSUFFICIENT_STOCK (details carry the shortfall)
    """
    try:
        data = json_body()
        lines = allocation_service.allocate_stock(
            db.session,
            product_id=require_int(data, "product_id"),
            location_id=require_int(data, "location_id"),
            quantity=data.get("quantity"),
            reference=data.get("reference"),
            settings=ledger_settings(),
        )
        return jsonify({
            "allocations": [line.to_dict() for line in lines],
            "quantity": sum(line.quantity for line in lines),
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to allocate stock")


@stock_bp.post("/batches/<int:batch_id>/remove")
def remove_stock_route(batch_id: int):
    """
    Request body: {"quantity": 2, "reason": "DAMAGE", "destination_location_id": 2, "note": "..."}
    """
    try:
        data = json_body()
        removal = stock_service.remove_stock(
            db.session,
            batch_id=batch_id,
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            destination_location_id=optional_int(data.get("destination_location_id"), "destination_location_id"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify(removal.to_dict()), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to remove stock")


@stock_bp.get("/summary")
def stock_summary_route():
    try:
        summary = stock_service.stock_summary(
            db.session,
            product_id=require_int(request.args, "product_id"),
            location_id=require_int(request.args, "location_id"),
        )
        return jsonify(summary), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to build stock summary")


@stock_bp.get("/movements")
def list_movements_route():
    try:
        movements = stock_service.list_movements(
            db.session,
            product_id=optional_int(request.args.get("product_id"), "product_id"),
            location_id=optional_int(request.args.get("location_id"), "location_id"),
            batch_id=optional_int(request.args.get("batch_id"), "batch_id"),
            limit=min(optional_int(request.args.get("limit"), "limit") or 200, 1000),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list stock movements")
