# Overview: Flask API routes for sale transactions; direct stock sales and transaction lookups.

# backend/rxledger/routes/sales.py
"""
Sales API Routes

Party sales (consignment / agent) are recorded under /api/parties/<id>/sales.
This blueprint covers RETAIL and BULK sales straight from a location's stock
and read access to every transaction.
"""

from flask import Blueprint, jsonify, request

from ..errors import LedgerError
from ..extensions import db
from ..services import sales_service
from ..validation import optional_bool, optional_int, require_int
from .common import error_response, json_body, ledger_settings, server_error


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
def create_stock_sale_route():
    """
    Request body:
    {
        "location_id": 1,
        "transaction_type": "RETAIL",        (RETAIL or BULK)
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "customer_name": "Walk-in",          (optional)
        "party_id": 3,                       (optional)
        "payment_type": "CASH",
        "payment_details": {...},            (optional)
        "settle": true                       (optional; RETAIL and BULK default to paid)
    }
    """
    try:
        data = json_body()
        sale = sales_service.record_stock_sale(
            db.session,
            location_id=require_int(data, "location_id"),
            items=data.get("items"),
            transaction_type=data.get("transaction_type") or sales_service.TXN_RETAIL,
            customer_name=data.get("customer_name"),
            party_id=optional_int(data.get("party_id"), "party_id"),
            payment_type=data.get("payment_type") or "CASH",
            payment_details=data.get("payment_details"),
            settle=optional_bool(data.get("settle"), "settle"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify({
            "transaction_id": sale.id,
            "transaction_number": sale.transaction_number,
            "transaction": sale.to_dict(),
        }), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to record stock sale")


@sales_bp.get("/")
def list_transactions_route():
    try:
        sales = sales_service.list_transactions(
            db.session,
            party_id=optional_int(request.args.get("party_id"), "party_id"),
            location_id=optional_int(request.args.get("location_id"), "location_id"),
            transaction_type=request.args.get("transaction_type"),
            limit=min(optional_int(request.args.get("limit"), "limit") or 200, 1000),
        )
        return jsonify({"transactions": [s.to_dict(include_items=False) for s in sales]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list transactions")


@sales_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        sale = sales_service.get_transaction(db.session, transaction_id=transaction_id)
        data = sale.to_dict()
        data["payments"] = [p.to_dict() for p in sale.payments]
        return jsonify({"transaction": data}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to get transaction")
