# Overview: Assignment ledger for consignment customers and agents; additions, line sales and returns.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import ExceedsBalance, InvalidState, NotFound, ValidationError
from ..models import AssignmentHolding, AssignmentLine, ConsignmentPeriod, Party
from ..models.assignments import PERIOD_ACTIVE
from ..periods import Period
from ..time_utils import business_today
from ..validation import optional_int, optional_period, require_mapping, require_positive_int, require_price_cents
from .allocation_service import allocate_locked
from .catalog_service import get_party, get_product
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .consignment_service import (
    ensure_period_locked,
    find_period,
    refresh_period_totals,
    require_open,
    resolve_period_locked,
)
from .history_service import (
    ACTION_CREATED,
    ACTION_ITEMS_ADDED,
    ACTION_ITEMS_RETURNED,
    append_history,
)
from .stock_service import MOVEMENT_RETURN, credit_batch_locked, fifo_sort_key, get_batch
"""
Assignment Ledger Invariants (authoritative)

Conservation, after every operation:
    current_balance = previous_balance + quantity_added - quantity_sold - quantity_returned
    current_balance >= 0, every counter >= 0
    sum(holding outstanding) == current_balance

- Customers hold stock per calendar month (ConsignmentPeriod); agents hold a
  single running balance per product (period_id NULL, previous_balance 0).
- Additions are FIFO-allocated from the party's home location. A failed
  allocation leaves the line untouched.
- Sales do not touch the stock pool (the stock left it when assigned); they
  consume the line's holdings oldest batch first.
- Returns credit the stock pool back to the batches the units came from.
"""


# =============================================================================
# Line helpers (also used by the period roll-forward)
# =============================================================================

def _line_query(session, *, party_id: int, period_id: int | None, product_id: int):
    query = session.query(AssignmentLine).filter(
        AssignmentLine.party_id == party_id,
        AssignmentLine.product_id == product_id,
    )
    if period_id is None:
        return query.filter(AssignmentLine.period_id.is_(None))
    return query.filter(AssignmentLine.period_id == period_id)


def find_line_locked(session, *, party: Party, period_row: ConsignmentPeriod | None, product_id: int) -> AssignmentLine:
    line = lock_for_update(
        _line_query(
            session,
            party_id=party.id,
            period_id=period_row.id if period_row is not None else None,
            product_id=product_id,
        )
    ).first()
    if line is None:
        raise NotFound(
            "assignment line",
            party_id=party.id,
            product_id=product_id,
            period_id=period_row.id if period_row is not None else None,
        )
    return line


def get_or_create_line_locked(
    session,
    *,
    party: Party,
    period_row: ConsignmentPeriod | None,
    product_id: int,
    unit_price_cents: int,
) -> tuple[AssignmentLine, bool]:
    period_id = period_row.id if period_row is not None else None
    line = lock_for_update(
        _line_query(session, party_id=party.id, period_id=period_id, product_id=product_id)
    ).first()
    if line is not None:
        return line, False

    line = AssignmentLine(
        party_id=party.id,
        period_id=period_id,
        product_id=product_id,
        unit_price_cents=unit_price_cents,
        previous_balance=0,
        quantity_added=0,
        quantity_sold=0,
        quantity_returned=0,
        current_balance=0,
        total_assigned_value_cents=0,
        total_sold_value_cents=0,
    )
    session.add(line)
    session.flush()
    return line, True


def get_or_create_holding_locked(session, line: AssignmentLine, batch_id: int) -> AssignmentHolding:
    for holding in line.holdings:
        if holding.batch_id == batch_id:
            return holding
    holding = AssignmentHolding(
        assignment_line_id=line.id,
        batch_id=batch_id,
        quantity_allocated=0,
        quantity_sold=0,
        quantity_returned=0,
    )
    line.holdings.append(holding)
    session.add(holding)
    return holding


def check_line_invariants(line: AssignmentLine) -> None:
    """Raise InvalidState if a line no longer balances (nothing is committed)."""
    counters = (
        line.previous_balance,
        line.quantity_added,
        line.quantity_sold,
        line.quantity_returned,
        line.current_balance,
    )
    if any(value < 0 for value in counters):
        raise InvalidState("assignment line counter went negative", {"line_id": line.id})
    if line.current_balance != line.expected_balance:
        raise InvalidState(
            "assignment line does not balance",
            {"line_id": line.id, "current_balance": line.current_balance, "expected": line.expected_balance},
        )
    held = sum(h.quantity_outstanding for h in line.holdings)
    if held != line.current_balance:
        raise InvalidState(
            "assignment line holdings out of sync",
            {"line_id": line.id, "current_balance": line.current_balance, "held": held},
        )


def _outstanding_holdings(line: AssignmentLine) -> list[AssignmentHolding]:
    held = [h for h in line.holdings if h.quantity_outstanding > 0]
    return sorted(held, key=lambda h: fifo_sort_key(h.batch))


def apportion_return(holdings: list[AssignmentHolding], quantity: int) -> list[tuple[AssignmentHolding, int]]:
    """
    Split a returned quantity across holdings in proportion to what each
    still has outstanding.

    Shares are floored, then the leftover units go to the largest remainders,
    ties to the older batch (holdings arrive in FIFO order).
    """
    total = sum(h.quantity_outstanding for h in holdings)
    if quantity > total:
        raise ValueError("quantity exceeds outstanding holdings")

    shares = []
    for index, holding in enumerate(holdings):
        numerator = quantity * holding.quantity_outstanding
        shares.append([holding, numerator // total, numerator % total, index])

    leftover = quantity - sum(share[1] for share in shares)
    for share in sorted(shares, key=lambda s: (-s[2], s[3]))[:leftover]:
        share[1] += 1

    return [(holding, take) for holding, take, _, _ in shares if take > 0]


def record_line_sale_locked(
    session,
    *,
    line: AssignmentLine,
    quantity: int,
    unit_price_cents: int,
) -> list[tuple[int, int]]:
    """
    Sell quantity units out of a locked line.

    Returns the (batch_id, quantity) slices consumed, oldest batch first.
    Raises ExceedsBalance before touching anything when quantity exceeds
    the line's current balance.
    """
    if quantity > line.current_balance:
        raise ExceedsBalance(
            action="sell",
            product_id=line.product_id,
            requested=quantity,
            current_balance=line.current_balance,
            line_id=line.id,
        )

    slices = []
    needed = quantity
    for holding in _outstanding_holdings(line):
        if needed <= 0:
            break
        take = min(holding.quantity_outstanding, needed)
        holding.quantity_sold += take
        slices.append((holding.batch_id, take))
        needed -= take

    line.quantity_sold += quantity
    line.current_balance -= quantity
    line.total_sold_value_cents += quantity * unit_price_cents
    check_line_invariants(line)
    return slices


def resolve_scope_locked(session, party: Party, period: Period | None) -> ConsignmentPeriod | None:
    if party.is_customer:
        row = resolve_period_locked(session, party, period)
        require_open(row)
        return row
    if period is not None:
        raise ValidationError("agents do not hold stock per period", {"party_id": party.id})
    return None


# =============================================================================
# Item lists
# =============================================================================

@dataclass(frozen=True)
class AssignItem:
    product_id: int
    quantity: int
    unit_price_cents: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], index: int = 0) -> "AssignItem":
        data = require_mapping(data, f"items[{index}]")
        return cls(
            product_id=_item_product_id(data, index),
            quantity=require_positive_int(data.get("quantity"), f"items[{index}].quantity"),
            unit_price_cents=require_price_cents(data.get("unit_price_cents"), f"items[{index}].unit_price_cents"),
        )


@dataclass(frozen=True)
class ReturnItem:
    product_id: int
    quantity: int
    batch_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], index: int = 0) -> "ReturnItem":
        data = require_mapping(data, f"items[{index}]")
        return cls(
            product_id=_item_product_id(data, index),
            quantity=require_positive_int(data.get("quantity"), f"items[{index}].quantity"),
            batch_id=optional_int(data.get("batch_id"), f"items[{index}].batch_id"),
        )


def _item_product_id(data: Mapping[str, Any], index: int) -> int:
    product_id = optional_int(data.get("product_id"), f"items[{index}].product_id")
    if product_id is None:
        raise ValidationError(f"items[{index}].product_id required", {"index": index})
    return product_id


def _coerce_items(items: Iterable, item_type) -> list:
    if items is None or isinstance(items, (str, bytes, Mapping)):
        raise ValidationError("items must be a list")
    result = []
    for index, item in enumerate(items):
        result.append(item if isinstance(item, item_type) else item_type.from_mapping(item, index))
    if not result:
        raise ValidationError("at least one item required")
    return result


def _assign_item_locked(
    session,
    *,
    party: Party,
    period_row: ConsignmentPeriod | None,
    item: AssignItem,
    note: str | None,
    settings: LedgerSettings,
) -> AssignmentLine:
    get_product(session, item.product_id, require_active=True)
    line, created = get_or_create_line_locked(
        session,
        party=party,
        period_row=period_row,
        product_id=item.product_id,
        unit_price_cents=item.unit_price_cents,
    )
    allocations = allocate_locked(
        session,
        product_id=item.product_id,
        location_id=party.location_id,
        quantity=item.quantity,
        settings=settings,
        assignment_line_id=line.id,
        reference=period_row.consignment_number if period_row is not None else f"AGENT-{party.id}",
    )
    for allocation in allocations:
        holding = get_or_create_holding_locked(session, line, allocation.batch_id)
        holding.quantity_allocated += allocation.quantity

    line.unit_price_cents = item.unit_price_cents
    line.quantity_added += item.quantity
    line.current_balance += item.quantity
    line.total_assigned_value_cents += item.quantity * item.unit_price_cents
    check_line_invariants(line)

    if created and period_row is None:
        append_history(
            session,
            party_id=party.id,
            assignment_line_id=line.id,
            product_id=item.product_id,
            action_type=ACTION_CREATED,
        )
    append_history(
        session,
        party_id=party.id,
        period_id=period_row.id if period_row is not None else None,
        assignment_line_id=line.id,
        product_id=item.product_id,
        action_type=ACTION_ITEMS_ADDED,
        quantity=item.quantity,
        amount_cents=item.quantity * item.unit_price_cents,
        note=note,
    )
    return line


def _return_item_locked(
    session,
    *,
    party: Party,
    period_row: ConsignmentPeriod | None,
    item: ReturnItem,
    note: str | None,
) -> AssignmentLine:
    line = find_line_locked(session, party=party, period_row=period_row, product_id=item.product_id)

    if item.quantity > line.current_balance:
        raise ExceedsBalance(
            action="return",
            product_id=item.product_id,
            requested=item.quantity,
            current_balance=line.current_balance,
            line_id=line.id,
        )

    if item.batch_id is not None:
        holding = next((h for h in line.holdings if h.batch_id == item.batch_id), None)
        if holding is None:
            raise NotFound("holding", batch_id=item.batch_id, line_id=line.id)
        if item.quantity > holding.quantity_outstanding:
            raise ExceedsBalance(
                action="return",
                product_id=item.product_id,
                requested=item.quantity,
                current_balance=holding.quantity_outstanding,
                line_id=line.id,
                batch_id=item.batch_id,
            )
        credits = [(holding, item.quantity)]
    else:
        credits = apportion_return(_outstanding_holdings(line), item.quantity)

    for holding, take in credits:
        batch = get_batch(session, holding.batch_id, lock=True)
        credit_batch_locked(
            session,
            batch,
            take,
            movement_type=MOVEMENT_RETURN,
            reference_type="assignment_line",
            reference_id=line.id,
            note=note,
        )
        holding.quantity_returned += take

    line.quantity_returned += item.quantity
    line.current_balance -= item.quantity
    check_line_invariants(line)

    append_history(
        session,
        party_id=party.id,
        period_id=period_row.id if period_row is not None else None,
        assignment_line_id=line.id,
        product_id=item.product_id,
        action_type=ACTION_ITEMS_RETURNED,
        quantity=item.quantity,
        amount_cents=item.quantity * line.unit_price_cents,
        note=note,
    )
    return line


# =============================================================================
# Public operations
# =============================================================================

def assign_items(
    session,
    *,
    party_id: int,
    items: Iterable,
    period=None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> list[AssignmentLine]:
    """
    Hand a list of products to a customer or agent in one unit of work.

    Each item ({product_id, quantity, unit_price_cents}) is FIFO-allocated
    from the party's home location. Customers receive the stock into the
    named period (default: the current month), which is created on first
    use. All-or-nothing: when any item fails (InsufficientStock, NotFound,
    an inactive product) no line, holding or batch changes.

    Returns the touched lines in item order.
    """
    settings = settings or DEFAULT_SETTINGS
    assign_list = _coerce_items(items, AssignItem)
    period = optional_period(period)

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True, require_active=True)

        period_row = None
        if party.is_customer:
            period_row = ensure_period_locked(session, party, period or Period.containing(business_today()))
            require_open(period_row)
        elif period is not None:
            raise ValidationError("agents do not hold stock per period", {"party_id": party.id})

        lines = [
            _assign_item_locked(session, party=party, period_row=period_row, item=item, note=note, settings=settings)
            for item in assign_list
        ]
        if period_row is not None:
            refresh_period_totals(session, period_row)

        session.commit()
        return lines

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def assign_to_party(
    session,
    *,
    party_id: int,
    product_id: int,
    quantity,
    unit_price_cents,
    period=None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> AssignmentLine:
    """Single-product form of assign_items."""
    item = {"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents}
    return assign_items(
        session,
        party_id=party_id,
        items=[item],
        period=period,
        note=note,
        settings=settings,
    )[0]


def return_items(
    session,
    *,
    party_id: int,
    items: Iterable,
    period=None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> list[AssignmentLine]:
    """
    Take a list of products back from a party and put them back in stock.

    An item with batch_id goes back to that batch whole; otherwise its
    quantity is split across the line's batches in proportion to what each
    still has outstanding. Customers return against the named period
    (default: their latest active one). All-or-nothing across the list.
    """
    settings = settings or DEFAULT_SETTINGS
    return_list = _coerce_items(items, ReturnItem)
    period = optional_period(period)

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True, require_active=True)
        period_row = resolve_scope_locked(session, party, period)

        lines = [
            _return_item_locked(session, party=party, period_row=period_row, item=item, note=note)
            for item in return_list
        ]
        if period_row is not None:
            refresh_period_totals(session, period_row)

        session.commit()
        return lines

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def record_return(
    session,
    *,
    party_id: int,
    product_id: int,
    quantity,
    batch_id=None,
    period=None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> AssignmentLine:
    """Single-product form of return_items."""
    item = {"product_id": product_id, "quantity": quantity, "batch_id": batch_id}
    return return_items(
        session,
        party_id=party_id,
        items=[item],
        period=period,
        note=note,
        settings=settings,
    )[0]


# =============================================================================
# Read models
# =============================================================================

def _read_period(session, party: Party, period: Period | None) -> ConsignmentPeriod | None:
    if not party.is_customer:
        return None
    if period is not None:
        row = find_period(session, party.id, period)
        if row is None:
            raise NotFound("consignment period", str(period), party_id=party.id)
        return row
    row = (
        session.query(ConsignmentPeriod)
        .filter_by(party_id=party.id, status=PERIOD_ACTIVE)
        .order_by(ConsignmentPeriod.year.desc(), ConsignmentPeriod.month.desc())
        .first()
    )
    if row is None:
        raise NotFound("active consignment period", party_id=party.id)
    return row


def get_assignment_line(session, *, party_id: int, product_id: int, period=None) -> AssignmentLine:
    party = get_party(session, party_id)
    period_row = _read_period(session, party, optional_period(period))
    line = _line_query(
        session,
        party_id=party.id,
        period_id=period_row.id if period_row is not None else None,
        product_id=product_id,
    ).first()
    if line is None:
        raise NotFound("assignment line", party_id=party.id, product_id=product_id)
    return line


def list_party_lines(session, *, party_id: int, period=None, include_empty: bool = True) -> list[AssignmentLine]:
    party = get_party(session, party_id)
    period_row = _read_period(session, party, optional_period(period))
    query = session.query(AssignmentLine).filter(AssignmentLine.party_id == party.id)
    if period_row is not None:
        query = query.filter(AssignmentLine.period_id == period_row.id)
    else:
        query = query.filter(AssignmentLine.period_id.is_(None))
    if not include_empty:
        query = query.filter(AssignmentLine.current_balance > 0)
    return query.order_by(AssignmentLine.id).all()
