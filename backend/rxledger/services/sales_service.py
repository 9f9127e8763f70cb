# Overview: Sale recorder; party sales out of assignment lines and direct stock sales, each one atomic unit of work.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import NotFound, ValidationError
from ..models import SaleLineItem, SaleTransaction
from ..validation import optional_period, require_mapping, require_positive_int, require_price_cents, optional_int
from .allocation_service import allocate_locked
from .assignment_service import resolve_scope_locked, find_line_locked, record_line_sale_locked
from .catalog_service import get_location, get_party, get_product
from .concurrency import begin_serialized, run_with_retry
from .history_service import ACTION_SALE_RECORDED, append_history
from .payment_methods import PAYMENT_METHODS, parse_payment_method
from .payment_service import PAYMENT_STATUS_UNPAID, refresh_payment_status, settle_in_full_locked
from .sequence_service import next_transaction_number
"""
Sale Recorder Invariants (authoritative)

- All-or-nothing across the item list: one failing item (ExceedsBalance,
  InsufficientStock, NotFound) rolls back every other item, the transaction
  header and its number.
- The transaction number is drawn inside the same unit of work as the ledger
  change, so concurrent sales at one location never share a number.
- The header is immutable after creation except for its derived payment
  status and total paid.
"""

TXN_RETAIL = "RETAIL"
TXN_BULK = "BULK"
TXN_CONSIGNMENT = "CONSIGNMENT"
TXN_AGENT = "AGENT"

STOCK_SALE_TYPES = (TXN_RETAIL, TXN_BULK)
TRANSACTION_TYPES = (TXN_RETAIL, TXN_BULK, TXN_CONSIGNMENT, TXN_AGENT)


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], index: int = 0) -> "SaleItem":
        data = require_mapping(data, f"items[{index}]")
        product_id = optional_int(data.get("product_id"), f"items[{index}].product_id")
        if product_id is None:
            raise ValidationError(f"items[{index}].product_id required", {"index": index})
        quantity = require_positive_int(data.get("quantity"), f"items[{index}].quantity")
        price = data.get("unit_price_cents")
        unit_price_cents = None
        if price is not None and price != "":
            unit_price_cents = require_price_cents(price, f"items[{index}].unit_price_cents")
        return cls(product_id=product_id, quantity=quantity, unit_price_cents=unit_price_cents)


def _coerce_items(items: Iterable) -> list[SaleItem]:
    if items is None or isinstance(items, (str, bytes, Mapping)):
        raise ValidationError("items must be a list")
    result = []
    for index, item in enumerate(items):
        result.append(item if isinstance(item, SaleItem) else SaleItem.from_mapping(item, index))
    if not result:
        raise ValidationError("at least one item required")
    return result


def _payment_type(payment_type: Any) -> str:
    name = str(payment_type or "").strip().upper()
    if name not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment type: {payment_type}. Must be one of {', '.join(PAYMENT_METHODS)}",
            {"payment_type": payment_type},
        )
    return name


def _finish_sale_locked(session, sale: SaleTransaction, settle: bool, payment_method, settings: LedgerSettings) -> None:
    if settle:
        settle_in_full_locked(session, sale, payment_method, settings=settings)
    else:
        refresh_payment_status(session, sale)


def record_party_sale(
    session,
    *,
    party_id: int,
    items: Iterable,
    payment_type: str = "CASH",
    payment_details: Mapping | None = None,
    settle: bool | None = None,
    period=None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> SaleTransaction:
    """
    Record a sale out of what a customer or agent holds.

    Each item sells out of the party's line for that product (customers:
    the named period, default their latest active one). Items without a
    unit price sell at the line's assignment price. The stock pool is not
    touched. settle=None applies the configured default for the type
    (CONSIGNMENT and AGENT sales start unpaid).
    """
    settings = settings or DEFAULT_SETTINGS
    sale_items = _coerce_items(items)
    period = optional_period(period)
    payment_type = _payment_type(payment_type)

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True, require_active=True)
        location = get_location(session, party.location_id)
        period_row = resolve_scope_locked(session, party, period)
        transaction_type = TXN_CONSIGNMENT if party.is_customer else TXN_AGENT
        should_settle = settings.settles_by_default(transaction_type) if settle is None else settle

        sale = SaleTransaction(
            transaction_number=next_transaction_number(session, location=location, pad=settings.txn_number_pad),
            transaction_type=transaction_type,
            location_id=location.id,
            party_id=party.id,
            period_id=period_row.id if period_row is not None else None,
            customer_name=party.name,
            payment_type=payment_type,
            total_amount_cents=0,
            payment_status=PAYMENT_STATUS_UNPAID,
            total_paid_cents=0,
            note=note,
        )
        session.add(sale)
        session.flush()

        total = 0
        for item in sale_items:
            line = find_line_locked(session, party=party, period_row=period_row, product_id=item.product_id)
            price = item.unit_price_cents if item.unit_price_cents is not None else line.unit_price_cents
            slices = record_line_sale_locked(session, line=line, quantity=item.quantity, unit_price_cents=price)
            for batch_id, quantity in slices:
                session.add(
                    SaleLineItem(
                        sale_id=sale.id,
                        product_id=item.product_id,
                        batch_id=batch_id,
                        assignment_line_id=line.id,
                        quantity=quantity,
                        unit_price_cents=price,
                        line_total_cents=quantity * price,
                    )
                )
            append_history(
                session,
                party_id=party.id,
                period_id=sale.period_id,
                assignment_line_id=line.id,
                product_id=item.product_id,
                sale_id=sale.id,
                action_type=ACTION_SALE_RECORDED,
                quantity=item.quantity,
                amount_cents=item.quantity * price,
                note=sale.transaction_number,
            )
            total += item.quantity * price

        sale.total_amount_cents = total
        # Cheque details only matter when the sale is paid at creation
        payment_method = parse_payment_method(payment_type, payment_details) if should_settle else None
        _finish_sale_locked(session, sale, should_settle, payment_method, settings)
        session.commit()
        return sale

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def record_stock_sale(
    session,
    *,
    location_id: int,
    items: Iterable,
    transaction_type: str = TXN_RETAIL,
    customer_name: str | None = None,
    party_id: int | None = None,
    payment_type: str = "CASH",
    payment_details: Mapping | None = None,
    settle: bool | None = None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> SaleTransaction:
    """
    Sell straight from a location's stock pool (RETAIL or BULK).

    Every item is FIFO-allocated; one SaleLineItem is written per batch
    slice. Items must carry a unit price. RETAIL and BULK sales are recorded paid in
    full by default.
    """
    settings = settings or DEFAULT_SETTINGS
    transaction_type = (transaction_type or "").strip().upper()
    if transaction_type not in STOCK_SALE_TYPES:
        raise ValidationError(
            f"transaction_type must be one of {', '.join(STOCK_SALE_TYPES)}",
            {"transaction_type": transaction_type},
        )
    sale_items = _coerce_items(items)
    for index, item in enumerate(sale_items):
        if item.unit_price_cents is None:
            raise ValidationError(f"items[{index}].unit_price_cents required", {"index": index})
    payment_type = _payment_type(payment_type)

    def _op():
        begin_serialized(session)
        location = get_location(session, location_id)
        party = get_party(session, party_id, require_active=True) if party_id is not None else None
        should_settle = settings.settles_by_default(transaction_type) if settle is None else settle

        sale = SaleTransaction(
            transaction_number=next_transaction_number(session, location=location, pad=settings.txn_number_pad),
            transaction_type=transaction_type,
            location_id=location.id,
            party_id=party.id if party is not None else None,
            customer_name=customer_name or (party.name if party is not None else None),
            payment_type=payment_type,
            total_amount_cents=0,
            payment_status=PAYMENT_STATUS_UNPAID,
            total_paid_cents=0,
            note=note,
        )
        session.add(sale)
        session.flush()

        total = 0
        for item in sale_items:
            get_product(session, item.product_id, require_active=True)
            allocations = allocate_locked(
                session,
                product_id=item.product_id,
                location_id=location.id,
                quantity=item.quantity,
                settings=settings,
                sale_id=sale.id,
                reference=sale.transaction_number,
            )
            for allocation in allocations:
                session.add(
                    SaleLineItem(
                        sale_id=sale.id,
                        product_id=item.product_id,
                        batch_id=allocation.batch_id,
                        quantity=allocation.quantity,
                        unit_price_cents=item.unit_price_cents,
                        line_total_cents=allocation.quantity * item.unit_price_cents,
                    )
                )
            total += item.quantity * item.unit_price_cents

        sale.total_amount_cents = total
        # Cheque details only matter when the sale is paid at creation
        payment_method = parse_payment_method(payment_type, payment_details) if should_settle else None
        _finish_sale_locked(session, sale, should_settle, payment_method, settings)
        session.commit()
        return sale

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def get_transaction(session, *, transaction_id: int) -> SaleTransaction:
    sale = session.get(SaleTransaction, transaction_id)
    if sale is None:
        raise NotFound("transaction", transaction_id)
    return sale


def list_transactions(
    session,
    *,
    party_id: int | None = None,
    location_id: int | None = None,
    transaction_type: str | None = None,
    limit: int = 200,
) -> list[SaleTransaction]:
    query = session.query(SaleTransaction)
    if party_id is not None:
        query = query.filter(SaleTransaction.party_id == party_id)
    if location_id is not None:
        query = query.filter(SaleTransaction.location_id == location_id)
    if transaction_type:
        query = query.filter(SaleTransaction.transaction_type == transaction_type.upper())
    return query.order_by(SaleTransaction.id.desc()).limit(limit).all()
