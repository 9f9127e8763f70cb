# Overview: Flask API routes for payments; record, remove and summarize payments per transaction.

# backend/rxledger/routes/payments.py
"""
Payment Reconciliation API Routes

DESIGN:
- Record partial payments against a sale transaction (never more than the
  remaining balance)
- Remove a payment; status is re-derived from what remains
- Payment summary with the payment event log

METHODS:
- CASH, GCASH, BANK_TRANSFER, CARD: details {"reference_number": "..."} (optional)
- CHEQUE: details {"cheque_number", "bank_name", "cheque_date": "YYYY-MM-DD"} (required)
"""

from flask import Blueprint, jsonify

from ..errors import LedgerError
from ..extensions import db
from ..services import payment_service
from ..validation import require_int
from .common import error_response, json_body, ledger_settings, optional_json_body, server_error


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/")
def record_payment_route():
    """
    Request body:
    {
        "transaction_id": 12,
        "amount_cents": 40000,
        "method": "CHEQUE",
        "details": {"cheque_number": "000123", "bank_name": "BDO", "cheque_date": "2024-03-15"},
        "note": "..."
    }

    Returns:
        201: {payment_id, payment_status, total_paid_cents, balance_cents, ...}
        409: OVER_PAYMENT
    """
    try:
        data = json_body()
        result = payment_service.record_payment(
            db.session,
            transaction_id=require_int(data, "transaction_id"),
            amount_cents=data.get("amount_cents"),
            method=data.get("method") or "CASH",
            details=data.get("details"),
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify(result), 201
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to record payment")


@payments_bp.delete("/<int:payment_id>")
def remove_payment_route(payment_id: int):
    try:
        data = optional_json_body()
        result = payment_service.remove_payment(
            db.session,
            payment_id=payment_id,
            note=data.get("note"),
            settings=ledger_settings(),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to remove payment")


@payments_bp.get("/transactions/<int:transaction_id>")
def payment_summary_route(transaction_id: int):
    try:
        summary = payment_service.payment_summary(db.session, transaction_id=transaction_id)
        return jsonify(summary), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to get payment summary")
