# Overview: Flask API routes for party ledgers; assignments, sales out of held stock, returns and history.

# backend/rxledger/routes/assignments.py
"""
Assignment Ledger API Routes

A party is a consignment customer (balances per calendar month) or an agent
(one running balance per product). The same endpoints serve both; "period"
("YYYY-MM") only applies to customers and defaults to the current month for
assignments and to the latest active period for sales and returns.
"""

from flask import Blueprint, jsonify, request

from ..errors import LedgerError
from ..extensions import db
from ..services import assignment_service, history_service, sales_service
from ..validation import optional_bool, optional_int, require_int
from .common import error_response, json_body, ledger_settings, server_error


assignments_bp = Blueprint("assignments", __name__, url_prefix="/api/parties")


def _item_list(data, *fields: str) -> tuple[list, bool]:
    """
    Body items: either an "items" list, or one item given by top-level
    fields. The flag is True for the single-item form.
    """
    if "items" in data:
        return data.get("items"), False
    item = {"product_id": require_int(data, "product_id")}
    item.update({name: data.get(name) for name in fields})
    return [item], True


def _lines_response(lines, single: bool, status: int):
    body = {"lines": [line.to_dict(include_holdings=True) for line in lines]}
    if single:
        body["line"] = body["lines"][0]
    return jsonify(body), status


@assignments_bp.post("/<int:party_id>/assign")
def assign_route(party_id: int):
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 10, "unit_price_cents": 1500}],
        "period": "2024-03",    (customers only, optional)
        "note": "..."           (optional)
    }

    A single product may be given with top-level "product_id", "quantity"
    and "unit_price_cents" instead of "items". The list is all-or-nothing.

    Returns:
        201: {"lines": [...]} with batch holdings ("line" too for a single product)
        409: INSUFFICIENT_STOCK / INVALID_STATE
    """
    try:
        data = json_body()
        items, single = _item_list(data, "quantity", "unit_price_cents")
        lines = assignment_service.assign_items(
            db.session,
            party_id=party_id,
            items=items,
            period=data.get("period"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return _lines_response(lines, single, 201)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to assign stock")


@assignments_bp.post("/<int:party_id>/sales")
def record_sale_route(party_id: int):
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 1500}],
        "payment_type": "CASH",
        "payment_details": {...},   (optional; cheque fields when settling by cheque)
        "settle": false,            (optional; default per transaction type)
        "period": "2024-03",        (customers only, optional)
        "note": "..."
    }
    """
    try:
        data = json_body()
        sale = sales_service.record_party_sale(
            db.session,
            party_id=party_id,
            items=data.get("items"),
            payment_type=data.get("payment_type") or "CASH",
            payment_details=data.get("payment_details"),
            settle=optional_bool(data.get("settle"), "settle"),
            period=data.get("period"),
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
        return server_error("Failed to record sale")


@assignments_bp.post("/<int:party_id>/returns")
def record_return_route(party_id: int):
    """
    Request body:
    {
        "items": [{"product_id": 1, "quantity": 3, "batch_id": 7}],
        "period": "2024-03",
        "note": "..."
    }

    A single product may be given with top-level fields instead of "items".
    batch_id is optional; without it the quantity is split across the
    line's batches in proportion to what each still has outstanding.
    """
    try:
        data = json_body()
        items, single = _item_list(data, "quantity", "batch_id")
        lines = assignment_service.return_items(
            db.session,
            party_id=party_id,
            items=items,
            period=data.get("period"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return _lines_response(lines, single, 200)
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to record return")


@assignments_bp.get("/<int:party_id>/lines")
def list_lines_route(party_id: int):
    """Query params: period (customers), include_empty (default true)."""
    try:
        include_empty = optional_bool(request.args.get("include_empty"), "include_empty")
        lines = assignment_service.list_party_lines(
            db.session,
            party_id=party_id,
            period=request.args.get("period"),
            include_empty=True if include_empty is None else include_empty,
        )
        return jsonify({"lines": [line.to_dict(include_holdings=True) for line in lines]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list assignment lines")


@assignments_bp.get("/<int:party_id>/history")
def list_history_route(party_id: int):
    try:
        entries = history_service.list_history(
            db.session,
            party_id=party_id,
            period_id=optional_int(request.args.get("period_id"), "period_id"),
            action_type=request.args.get("action_type"),
            limit=min(optional_int(request.args.get("limit"), "limit") or 200, 1000),
        )
        return jsonify({"history": [entry.to_dict() for entry in entries]}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to list assignment history")
