# Overview: Consignment periods; creation, aggregate refresh, close and manual roll-forward.

from __future__ import annotations

from sqlalchemy import func

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import InvalidState, NotFound, ValidationError
from ..models import AssignmentLine, ConsignmentPeriod, Location, Party, SaleTransaction
from ..models.assignments import PERIOD_ACTIVE, PERIOD_CLOSED
from ..periods import Period
from ..time_utils import utcnow
from ..validation import require_period
from .catalog_service import get_party
from .concurrency import begin_serialized, lock_for_update, run_with_retry
from .history_service import ACTION_CLOSED, ACTION_CREATED, ACTION_ROLLED_FORWARD, append_history
"""
Consignment Period Invariants (authoritative)

- One period per customer per calendar month.
- Period aggregates are the sums of the period's assignment lines (quantities
  and values) plus the payments against the period's sale transactions.
  They are recomputed by refresh_period_totals() inside every unit of work
  that changes a line or a payment; callers never set them.
- balance_due = total_sold_value - total_paid.
- A CLOSED period accepts no further assignment, sale or return.
- Roll-forward is manual: the caller picks source and target months, and a
  customer can skip a month deliberately.
"""


def consignment_number(location: Location, period: Period, party_id: int) -> str:
    return f"CON-{location.code}-{period.year:04d}{period.month:02d}-{party_id:04d}"


def _require_customer(party: Party) -> None:
    if not party.is_customer:
        raise InvalidState(
            "consignment periods apply to customers only",
            {"party_id": party.id, "party_type": party.party_type},
        )


def require_open(period_row: ConsignmentPeriod) -> None:
    if period_row.is_closed:
        raise InvalidState(
            f"consignment period {period_row.period} is closed",
            {"period_id": period_row.id, "status": period_row.status},
        )


def find_period(session, party_id: int, period: Period, *, lock: bool = False) -> ConsignmentPeriod | None:
    query = session.query(ConsignmentPeriod).filter_by(
        party_id=party_id,
        year=period.year,
        month=period.month,
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def ensure_period_locked(session, party: Party, period: Period) -> ConsignmentPeriod:
    """Return the customer's period for the month, creating it on first use."""
    _require_customer(party)
    row = find_period(session, party.id, period, lock=True)
    if row is not None:
        return row

    row = ConsignmentPeriod(
        party_id=party.id,
        location_id=party.location_id,
        consignment_number=consignment_number(party.location, period, party.id),
        month=period.month,
        year=period.year,
        status=PERIOD_ACTIVE,
        previous_balance_qty=0,
        added_qty=0,
        sold_qty=0,
        returned_qty=0,
        current_balance_qty=0,
        total_consigned_value_cents=0,
        total_sold_value_cents=0,
        total_paid_cents=0,
        balance_due_cents=0,
    )
    session.add(row)
    session.flush()
    append_history(
        session,
        party_id=party.id,
        period_id=row.id,
        action_type=ACTION_CREATED,
        note=f"Consignment {row.consignment_number} opened",
    )
    return row


def resolve_period_locked(session, party: Party, period: Period | None = None) -> ConsignmentPeriod:
    """
    The named period, or the customer's latest ACTIVE period when none is named.
    """
    _require_customer(party)
    if period is not None:
        row = find_period(session, party.id, period, lock=True)
        if row is None:
            raise NotFound("consignment period", str(period), party_id=party.id)
        return row

    query = (
        session.query(ConsignmentPeriod)
        .filter_by(party_id=party.id, status=PERIOD_ACTIVE)
        .order_by(ConsignmentPeriod.year.desc(), ConsignmentPeriod.month.desc())
    )
    row = lock_for_update(query).first()
    if row is None:
        raise NotFound("active consignment period", party_id=party.id)
    return row


def refresh_period_totals(session, period_row: ConsignmentPeriod) -> ConsignmentPeriod:
    """Recompute every aggregate from the lines and sale transactions."""
    session.flush()
    sums = session.query(
        func.coalesce(func.sum(AssignmentLine.previous_balance), 0),
        func.coalesce(func.sum(AssignmentLine.quantity_added), 0),
        func.coalesce(func.sum(AssignmentLine.quantity_sold), 0),
        func.coalesce(func.sum(AssignmentLine.quantity_returned), 0),
        func.coalesce(func.sum(AssignmentLine.current_balance), 0),
        func.coalesce(func.sum(AssignmentLine.total_assigned_value_cents), 0),
        func.coalesce(func.sum(AssignmentLine.total_sold_value_cents), 0),
    ).filter(AssignmentLine.period_id == period_row.id).one()
    paid = (
        session.query(func.coalesce(func.sum(SaleTransaction.total_paid_cents), 0))
        .filter(SaleTransaction.period_id == period_row.id)
        .scalar()
    )

    (
        period_row.previous_balance_qty,
        period_row.added_qty,
        period_row.sold_qty,
        period_row.returned_qty,
        period_row.current_balance_qty,
        period_row.total_consigned_value_cents,
        period_row.total_sold_value_cents,
    ) = (int(v) for v in sums)
    period_row.total_paid_cents = int(paid or 0)
    period_row.balance_due_cents = period_row.total_sold_value_cents - period_row.total_paid_cents
    return period_row


# =============================================================================
# Public operations
# =============================================================================

def open_period(
    session,
    *,
    party_id: int,
    period,
    settings: LedgerSettings | None = None,
) -> ConsignmentPeriod:
    """Create (or return) the customer's period for a month."""
    settings = settings or DEFAULT_SETTINGS
    period = require_period(period)

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True, require_active=True)
        row = ensure_period_locked(session, party, period)
        refresh_period_totals(session, row)
        session.commit()
        return row

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def close_period(
    session,
    *,
    party_id: int,
    period,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> ConsignmentPeriod:
    settings = settings or DEFAULT_SETTINGS
    period = require_period(period)

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True)
        _require_customer(party)
        row = find_period(session, party.id, period, lock=True)
        if row is None:
            raise NotFound("consignment period", str(period), party_id=party.id)
        require_open(row)
        _close_locked(session, row, note=note)
        session.commit()
        return row

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


def _close_locked(session, row: ConsignmentPeriod, *, note: str | None = None) -> None:
    refresh_period_totals(session, row)
    row.status = PERIOD_CLOSED
    row.closed_at = utcnow()
    append_history(
        session,
        party_id=row.party_id,
        period_id=row.id,
        action_type=ACTION_CLOSED,
        quantity=row.current_balance_qty,
        note=note,
    )


def roll_period_forward(
    session,
    *,
    party_id: int,
    from_period,
    to_period,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> ConsignmentPeriod:
    """
    Carry a customer's unsold balances into a later month.

    Every source line with a balance becomes (or tops up) the matching line
    in the target period: previous_balance and current_balance grow by the
    source balance, quantity_added stays untouched. Batch holdings move with
    the balance so later returns still credit the right batches. The source
    period is closed, which also makes a second roll of it fail.
    """
    from .assignment_service import check_line_invariants, get_or_create_holding_locked, get_or_create_line_locked

    settings = settings or DEFAULT_SETTINGS
    from_period = require_period(from_period, "from_period")
    to_period = require_period(to_period, "to_period")
    if to_period <= from_period:
        raise ValidationError(
            "to_period must be later than from_period",
            {"from_period": str(from_period), "to_period": str(to_period)},
        )

    def _op():
        begin_serialized(session)
        party = get_party(session, party_id, lock=True, require_active=True)
        _require_customer(party)

        source = find_period(session, party.id, from_period, lock=True)
        if source is None:
            raise NotFound("consignment period", str(from_period), party_id=party.id)
        require_open(source)

        target = ensure_period_locked(session, party, to_period)
        require_open(target)

        source_lines = (
            lock_for_update(
                session.query(AssignmentLine)
                .filter(AssignmentLine.period_id == source.id, AssignmentLine.current_balance > 0)
                .order_by(AssignmentLine.id)
            ).all()
        )
        for src in source_lines:
            line, _ = get_or_create_line_locked(
                session,
                party=party,
                period_row=target,
                product_id=src.product_id,
                unit_price_cents=src.unit_price_cents,
            )
            balance = src.current_balance
            line.previous_balance += balance
            line.current_balance += balance
            line.total_assigned_value_cents += balance * src.unit_price_cents

            for src_holding in src.holdings:
                outstanding = src_holding.quantity_outstanding
                if outstanding <= 0:
                    continue
                holding = get_or_create_holding_locked(session, line, src_holding.batch_id)
                holding.quantity_allocated += outstanding

            check_line_invariants(line)
            append_history(
                session,
                party_id=party.id,
                period_id=target.id,
                assignment_line_id=line.id,
                product_id=line.product_id,
                action_type=ACTION_ROLLED_FORWARD,
                quantity=balance,
                note=f"Carried from {from_period}",
            )

        target.rolled_from_period_id = source.id
        _close_locked(session, source, note=note or f"Rolled forward to {to_period}")
        refresh_period_totals(session, target)
        session.commit()
        return target

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


# =============================================================================
# Read models
# =============================================================================

def list_periods(session, *, party_id: int) -> list[ConsignmentPeriod]:
    party = get_party(session, party_id)
    _require_customer(party)
    return (
        session.query(ConsignmentPeriod)
        .filter_by(party_id=party.id)
        .order_by(ConsignmentPeriod.year.desc(), ConsignmentPeriod.month.desc())
        .all()
    )


def get_period(session, *, party_id: int, period) -> ConsignmentPeriod:
    period = require_period(period)
    row = find_period(session, party_id, period)
    if row is None:
        raise NotFound("consignment period", str(period), party_id=party_id)
    return row


def period_summary(session, *, party_id: int, period) -> dict:
    """Period header, its lines, and the sale transactions recorded against it."""
    row = get_period(session, party_id=party_id, period=period)
    sales = (
        session.query(SaleTransaction)
        .filter_by(period_id=row.id)
        .order_by(SaleTransaction.id)
        .all()
    )
    data = row.to_dict(include_lines=True)
    data["transactions"] = [sale.to_dict(include_items=False) for sale in sales]
    return data
