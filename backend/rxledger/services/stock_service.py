# Overview: Stock pool operations; batch receipt, eligibility, decrement/credit, manual removal and transfer.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import StockBatch, StockMovement
from ..time_utils import business_today
from ..validation import require_positive_int, coerce_int
from .catalog_service import get_location, get_product
from .concurrency import begin_serialized, lock_for_update, run_with_retry
"""
Stock Pool Invariants (authoritative)

- A StockBatch is one received lot of one product at one location.
- quantity_remaining never goes negative; decrement refuses rather than clamps.
- Exhausted batches stay for audit and are never eligible again.
- "Expired" means expires_on <= today; expired batches are excluded from
  allocation when the ledger is configured to do so (default).
- Every quantity change appends a StockMovement in the same unit of work.
"""

MOVEMENT_RECEIVE = "RECEIVE"
MOVEMENT_ALLOCATE = "ALLOCATE"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_REMOVE = "REMOVE"
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"

REMOVAL_DAMAGE = "DAMAGE"
REMOVAL_EXPIRED = "EXPIRED"
REMOVAL_LOST = "LOST"
REMOVAL_TRANSFER = "TRANSFER"
REMOVAL_REASONS = (REMOVAL_DAMAGE, REMOVAL_EXPIRED, REMOVAL_LOST, REMOVAL_TRANSFER)


@dataclass
class StockRemoval:
    batch: StockBatch
    quantity: int
    reason: str
    destination_batch: StockBatch | None = None

    def to_dict(self) -> dict:
        return {
            "batch": self.batch.to_dict(),
            "quantity": self.quantity,
            "reason": self.reason,
            "destination_batch": self.destination_batch.to_dict() if self.destination_batch else None,
        }


def fifo_sort_key(batch: StockBatch):
    """
    Oldest-manufactured first.

    Batches without a manufacture date sort after every dated batch; ties go
    to the earlier expiry (undated expiry last), then to the older row.
    """
    return (
        batch.manufactured_on is None,
        batch.manufactured_on or date.max,
        batch.expires_on is None,
        batch.expires_on or date.max,
        batch.id,
    )


def get_batch(session, batch_id: int, *, lock: bool = False) -> StockBatch:
    query = session.query(StockBatch).filter_by(id=batch_id)
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise NotFound("stock batch", batch_id)
    return batch


def record_movement(
    session,
    batch: StockBatch,
    *,
    movement_type: str,
    quantity_delta: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reason: str | None = None,
    note: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        batch_id=batch.id,
        product_id=batch.product_id,
        location_id=batch.location_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        quantity_after=batch.quantity_remaining,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        note=note,
    )
    session.add(movement)
    return movement


# =============================================================================
# Receiving
# =============================================================================

def _receive_batch_inner(
    session,
    *,
    product_id: int,
    location_id: int,
    quantity: int,
    unit_cost_cents: int,
    batch_no: str | None,
    manufactured_on: date | None,
    expires_on: date | None,
    supplier_reference: str | None,
    movement_type: str = MOVEMENT_RECEIVE,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> StockBatch:
    """Core receipt logic without locking, retry or commit."""
    batch = StockBatch(
        product_id=product_id,
        location_id=location_id,
        batch_no=batch_no,
        supplier_reference=supplier_reference,
        manufactured_on=manufactured_on,
        expires_on=expires_on,
        unit_cost_cents=unit_cost_cents,
        quantity_received=quantity,
        quantity_remaining=quantity,
    )
    session.add(batch)
    session.flush()
    record_movement(
        session,
        batch,
        movement_type=movement_type,
        quantity_delta=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
    )
    return batch


def receive_stock(
    session,
    *,
    product_id: int,
    location_id: int,
    quantity,
    unit_cost_cents=0,
    batch_no: str | None = None,
    manufactured_on: date | None = None,
    expires_on: date | None = None,
    supplier_reference: str | None = None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> StockBatch:
    """Receive a new lot into the pool. quantity must be > 0."""
    settings = settings or DEFAULT_SETTINGS
    quantity = require_positive_int(quantity, "quantity")
    unit_cost_cents = coerce_int(unit_cost_cents, "unit_cost_cents")
    if unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents cannot be negative", {"value": unit_cost_cents})
    if manufactured_on and expires_on and expires_on < manufactured_on:
        raise ValidationError(
            "expires_on cannot be before manufactured_on",
            {"manufactured_on": manufactured_on.isoformat(), "expires_on": expires_on.isoformat()},
        )

    def _op():
        begin_serialized(session)
        get_product(session, product_id, require_active=True)
        get_location(session, location_id)
        batch = _receive_batch_inner(
            session,
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            batch_no=batch_no,
            manufactured_on=manufactured_on,
            expires_on=expires_on,
            supplier_reference=supplier_reference,
            note=note,
        )
        session.commit()
        return batch

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


# =============================================================================
# Eligibility
# =============================================================================

def _eligible_query(session, product_id: int, location_id: int, *, exclude_expired: bool, as_of: date):
    query = session.query(StockBatch).filter(
        StockBatch.product_id == product_id,
        StockBatch.location_id == location_id,
        StockBatch.quantity_remaining > 0,
    )
    if exclude_expired:
        query = query.filter(
            (StockBatch.expires_on.is_(None)) | (StockBatch.expires_on > as_of)
        )
    return query


def available_batches(
    session,
    *,
    product_id: int,
    location_id: int,
    exclude_expired: bool = True,
    as_of: date | None = None,
    lock: bool = False,
) -> list[StockBatch]:
    """Eligible batches in FIFO order. lock=True for use inside a unit of work."""
    query = _eligible_query(
        session,
        product_id,
        location_id,
        exclude_expired=exclude_expired,
        as_of=as_of or business_today(),
    ).order_by(StockBatch.id)
    if lock:
        query = lock_for_update(query)
    return sorted(query.all(), key=fifo_sort_key)


def list_available(
    session,
    *,
    product_id: int,
    location_id: int,
    exclude_expired: bool = True,
    as_of: date | None = None,
) -> list[StockBatch]:
    """Batches with stock remaining, oldest first, optionally without expired ones."""
    get_product(session, product_id)
    get_location(session, location_id)
    return available_batches(
        session,
        product_id=product_id,
        location_id=location_id,
        exclude_expired=exclude_expired,
        as_of=as_of,
    )


# =============================================================================
# Decrement / credit
# =============================================================================

def decrement_batch_locked(
    session,
    batch: StockBatch,
    quantity: int,
    *,
    movement_type: str = MOVEMENT_ALLOCATE,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reason: str | None = None,
    note: str | None = None,
) -> StockMovement:
    """Take quantity from an already locked batch; refuses to go below zero."""
    if quantity > batch.quantity_remaining:
        raise InsufficientStock(
            product_id=batch.product_id,
            location_id=batch.location_id,
            requested=quantity,
            available=batch.quantity_remaining,
        )
    batch.quantity_remaining -= quantity
    return record_movement(
        session,
        batch,
        movement_type=movement_type,
        quantity_delta=-quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        reason=reason,
        note=note,
    )


def credit_batch_locked(
    session,
    batch: StockBatch,
    quantity: int,
    *,
    movement_type: str = MOVEMENT_RETURN,
    reference_type: str | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """Put quantity back on an already locked batch (returns)."""
    if batch.quantity_remaining + quantity > batch.quantity_received:
        raise ValidationError(
            "credit would exceed the quantity originally received",
            {"batch_id": batch.id, "quantity": quantity},
        )
    batch.quantity_remaining += quantity
    return record_movement(
        session,
        batch,
        movement_type=movement_type,
        quantity_delta=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
    )


def decrement(
    session,
    *,
    batch_id: int,
    quantity,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> StockBatch:
    """Decrement one batch directly. InsufficientStock if quantity > remaining."""
    settings = settings or DEFAULT_SETTINGS
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        begin_serialized(session)
        batch = get_batch(session, batch_id, lock=True)
        decrement_batch_locked(session, batch, quantity, note=note)
        session.commit()
        return batch

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


# =============================================================================
# Manual removal / transfer
# =============================================================================

def remove_stock(
    session,
    *,
    batch_id: int,
    quantity,
    reason: str,
    destination_location_id: int | None = None,
    note: str | None = None,
    settings: LedgerSettings | None = None,
) -> StockRemoval:
    """
    Remove stock from a batch by hand.

    DAMAGE, EXPIRED and LOST take the stock out of the pool. TRANSFER moves
    it to destination_location_id as a new batch carrying the same batch
    number, dates and cost.
    """
    settings = settings or DEFAULT_SETTINGS
    quantity = require_positive_int(quantity, "quantity")
    reason = (reason or "").strip().upper()
    if reason not in REMOVAL_REASONS:
        raise ValidationError(
            f"reason must be one of {', '.join(REMOVAL_REASONS)}",
            {"reason": reason},
        )
    if reason == REMOVAL_TRANSFER and destination_location_id is None:
        raise ValidationError("destination_location_id required for TRANSFER", {"reason": reason})
    if reason != REMOVAL_TRANSFER and destination_location_id is not None:
        raise ValidationError("destination_location_id only applies to TRANSFER", {"reason": reason})

    def _op():
        begin_serialized(session)
        batch = get_batch(session, batch_id, lock=True)

        if reason != REMOVAL_TRANSFER:
            decrement_batch_locked(
                session,
                batch,
                quantity,
                movement_type=MOVEMENT_REMOVE,
                reference_type="removal",
                reason=reason,
                note=note,
            )
            session.commit()
            return StockRemoval(batch=batch, quantity=quantity, reason=reason)

        get_location(session, destination_location_id)
        if destination_location_id == batch.location_id:
            raise ValidationError(
                "cannot transfer a batch to its own location",
                {"location_id": destination_location_id},
            )
        decrement_batch_locked(
            session,
            batch,
            quantity,
            movement_type=MOVEMENT_TRANSFER_OUT,
            reference_type="location",
            reference_id=destination_location_id,
            reason=reason,
            note=note,
        )
        destination = _receive_batch_inner(
            session,
            product_id=batch.product_id,
            location_id=destination_location_id,
            quantity=quantity,
            unit_cost_cents=batch.unit_cost_cents,
            batch_no=batch.batch_no,
            manufactured_on=batch.manufactured_on,
            expires_on=batch.expires_on,
            supplier_reference=batch.supplier_reference,
            movement_type=MOVEMENT_TRANSFER_IN,
            reference_type="stock_batch",
            reference_id=batch.id,
            note=note,
        )
        session.commit()
        return StockRemoval(batch=batch, quantity=quantity, reason=reason, destination_batch=destination)

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)


# =============================================================================
# Read models
# =============================================================================

def stock_summary(session, *, product_id: int, location_id: int, as_of: date | None = None) -> dict:
    """On-hand, available (non-expired) and expired quantities with cost value."""
    get_product(session, product_id)
    get_location(session, location_id)
    as_of = as_of or business_today()

    base = session.query(
        func.coalesce(func.sum(StockBatch.quantity_remaining), 0),
        func.coalesce(func.sum(StockBatch.quantity_remaining * StockBatch.unit_cost_cents), 0),
        func.count(StockBatch.id),
    ).filter(
        StockBatch.product_id == product_id,
        StockBatch.location_id == location_id,
        StockBatch.quantity_remaining > 0,
    )
    on_hand, value_cents, batch_count = base.one()
    expired = base.filter(
        StockBatch.expires_on.isnot(None),
        StockBatch.expires_on <= as_of,
    ).one()[0]

    return {
        "product_id": product_id,
        "location_id": location_id,
        "as_of": as_of.isoformat(),
        "quantity_on_hand": int(on_hand),
        "quantity_available": int(on_hand) - int(expired),
        "quantity_expired": int(expired),
        "batch_count": int(batch_count),
        "inventory_value_cents": int(value_cents),
    }


def list_movements(
    session,
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    batch_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    query = session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if location_id is not None:
        query = query.filter(StockMovement.location_id == location_id)
    if batch_id is not None:
        query = query.filter(StockMovement.batch_id == batch_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()
