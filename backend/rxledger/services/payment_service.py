# Overview: Payment reconciliation; append/remove payments and derive each transaction's payment status.

"""
Payment Reconciliation Service

DESIGN PRINCIPLES:
- Payments are separate from sale transactions (many-to-one relationship)
- Partial payments: any number of payments up to the transaction total
- No over-payment: a payment larger than the remaining balance is refused
- Removal deletes the payment row; the PaymentEvent log keeps both events
- payment_status and total_paid_cents are derived from the payment rows on
  every change, never set by callers
"""

from __future__ import annotations

from datetime import date
from typing import Mapping

from sqlalchemy import func

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import NotFound, OverPayment
from ..models import ConsignmentPeriod, Payment, PaymentEvent, SaleTransaction
from ..time_utils import business_today
from ..validation import require_positive_int
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .consignment_service import refresh_period_totals
from .payment_methods import PaymentMethod, parse_payment_method


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"

EVENT_RECORDED = "RECORDED"
EVENT_REMOVED = "REMOVED"


def derive_payment_status(total_paid_cents: int, total_due_cents: int, settled: bool = False) -> str:
    """
    PAYMENT STATUS:
    - PAID: total_paid >= total_due, a settling cheque is on file, or nothing is due
    - PARTIAL: 0 < total_paid < total_due
    - UNPAID: total_paid = 0

    A settling cheque marks the transaction PAID whatever its amount. While
    it is on file the balance (total_due - total_paid) can stay above zero,
    and further payments are still accepted up to that balance. Removing
    the cheque re-derives the status from the amounts alone.
    """
    if total_due_cents <= 0 or settled or total_paid_cents >= total_due_cents:
        return PAYMENT_STATUS_PAID
    if total_paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_UNPAID


def _paid_cents(session, sale_id: int) -> int:
    return int(
        session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.sale_id == sale_id)
        .scalar()
    )


def refresh_payment_status(session, sale: SaleTransaction) -> SaleTransaction:
    """Recompute total paid and status from the payment rows (and the period's totals)."""
    session.flush()
    settled = (
        session.query(Payment.id)
        .filter(Payment.sale_id == sale.id, Payment.settles_transaction.is_(True))
        .first()
        is not None
    )
    sale.total_paid_cents = _paid_cents(session, sale.id)
    sale.payment_status = derive_payment_status(sale.total_paid_cents, sale.total_amount_cents, settled)

    if sale.period_id is not None:
        period_row = lock_for_update(
            session.query(ConsignmentPeriod).filter_by(id=sale.period_id)
        ).first()
        refresh_period_totals(session, period_row)
    return sale


def _status_result(sale: SaleTransaction, **extra) -> dict:
    return {
        "transaction_id": sale.id,
        "transaction_number": sale.transaction_number,
        "payment_status": sale.payment_status,
        "total_amount_cents": sale.total_amount_cents,
        "total_paid_cents": sale.total_paid_cents,
        "balance_cents": sale.balance_cents,
        **extra,
    }


def _log_payment_event(session, payment: Payment, event_type: str, amount_cents: int, note: str | None) -> PaymentEvent:
    event = PaymentEvent(
        payment_id=payment.id,
        sale_id=payment.sale_id,
        event_type=event_type,
        method=payment.method,
        amount_cents=amount_cents,
        note=note,
    )
    session.add(event)
    return event


def _add_payment_locked(
    session,
    sale: SaleTransaction,
    payment_method: PaymentMethod,
    amount_cents: int,
    *,
    today: date,
    settings: LedgerSettings,
    note: str | None = None,
) -> Payment:
    payment = Payment(
        sale_id=sale.id,
        amount_cents=amount_cents,
        settles_transaction=payment_method.settles_on(today, settings),
    )
    payment_method.apply_to(payment)
    session.add(payment)
    session.flush()  # Get payment ID
    _log_payment_event(session, payment, EVENT_RECORDED, amount_cents, note)
    return payment


def settle_in_full_locked(
    session,
    sale: SaleTransaction,
    payment_method: PaymentMethod,
    *,
    settings: LedgerSettings,
    today: date | None = None,
) -> Payment | None:
    """Record one payment for the whole total (sales recorded as paid at creation)."""
    payment = None
    if sale.total_amount_cents > 0:
        payment = _add_payment_locked(
            session,
            sale,
            payment_method,
            sale.total_amount_cents,
            today=today or business_today(),
            settings=settings,
            note="Paid in full at sale",
        )
    refresh_payment_status(session, sale)
    return payment


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def record_payment(
    session,
    *,
    transaction_id: int,
    amount_cents,
    method="CASH",
    details: Mapping | None = None,
    note: str | None = None,
    today: date | None = None,
    settings: LedgerSettings | None = None,
) -> dict:
    """
    Record a payment against a sale transaction.

    Raises OverPayment when amount_cents exceeds the remaining balance
    (total minus the payments already recorded). Returns the transaction's
    recomputed status, total paid and balance.
    """
    settings = settings or DEFAULT_SETTINGS
    amount_cents = require_positive_int(amount_cents, "amount_cents")
    payment_method = parse_payment_method(method, details)

    def _op():
        begin_serialized(session)
        sale = lock_for_update(session.query(SaleTransaction).filter_by(id=transaction_id)).first()
        if sale is None:
            raise NotFound("transaction", transaction_id)

        remaining = sale.total_amount_cents - _paid_cents(session, sale.id)
        if amount_cents > remaining:
            raise OverPayment(
                transaction_id=sale.id,
                amount_cents=amount_cents,
                remaining_cents=max(remaining, 0),
            )

        payment = _add_payment_locked(
            session,
            sale,
            payment_method,
            amount_cents,
            today=today or business_today(),
            settings=settings,
            note=note,
        )
        refresh_payment_status(session, sale)
        session.commit()
        return _status_result(sale, payment_id=payment.id)

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def remove_payment(
    session,
    *,
    payment_id: int,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> dict:
    """Delete a payment and re-derive its transaction's status."""
    settings = settings or DEFAULT_SETTINGS

    def _op():
        begin_serialized(session)
        payment = lock_for_update(session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFound("payment", payment_id)

        # Lock sale for status update
        sale = lock_for_update(session.query(SaleTransaction).filter_by(id=payment.sale_id)).first()

        _log_payment_event(session, payment, EVENT_REMOVED, -payment.amount_cents, note)
        session.delete(payment)
        refresh_payment_status(session, sale)
        session.commit()
        return _status_result(sale, payment_id=payment_id)

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


# =============================================================================
# READ MODELS
# =============================================================================

def list_payment_events(session, *, transaction_id: int) -> list[PaymentEvent]:
    return (
        session.query(PaymentEvent)
        .filter_by(sale_id=transaction_id)
        .order_by(PaymentEvent.id)
        .all()
    )


def payment_summary(session, *, transaction_id: int) -> dict:
    sale = session.get(SaleTransaction, transaction_id)
    if sale is None:
        raise NotFound("transaction", transaction_id)
    payments = (
        session.query(Payment)
        .filter_by(sale_id=sale.id)
        .order_by(Payment.id)
        .all()
    )
    return _status_result(
        sale,
        payments=[p.to_dict() for p in payments],
        events=[e.to_dict() for e in list_payment_events(session, transaction_id=sale.id)],
    )
