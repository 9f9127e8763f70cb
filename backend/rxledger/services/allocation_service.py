# Overview: FIFO allocator; turns a quantity request into per-batch allocation lines, all or nothing.

from __future__ import annotations

from datetime import date
from typing import Iterable

from ..config import DEFAULT_SETTINGS, LedgerSettings
from ..errors import InsufficientStock
from ..models import AllocationLine, StockBatch
from ..time_utils import business_today
from ..validation import require_positive_int
from .catalog_service import get_location, get_product
from .concurrency import begin_serialized, run_with_retry
from .stock_service import (
    MOVEMENT_ALLOCATE,
    available_batches,
    decrement_batch_locked,
    fifo_sort_key,
)


def plan_fifo(batches: Iterable[StockBatch], quantity: int) -> tuple[list[tuple[StockBatch, int]], int]:
    """
    Simulate a FIFO allocation without touching any batch.

    Returns the (batch, take) slices in oldest-first order and the quantity
    left unsatisfied (0 when the batches cover the request).
    """
    slices = []
    needed = quantity
    for batch in sorted(batches, key=fifo_sort_key):
        if needed <= 0:
            break
        if batch.quantity_remaining <= 0:
            continue
        take = min(batch.quantity_remaining, needed)
        slices.append((batch, take))
        needed -= take
    return slices, needed


def allocate_locked(
    session,
    *,
    product_id: int,
    location_id: int,
    quantity: int,
    settings: LedgerSettings | None = None,
    today: date | None = None,
    assignment_line_id: int | None = None,
    sale_id: int | None = None,
    reference: str | None = None,
) -> list[AllocationLine]:
    """
    Allocate inside the caller's unit of work (no commit, no retry).

    Sufficiency is checked against the locked batches before the first
    decrement, so a shortfall raises InsufficientStock with no batch changed.
    """
    settings = settings or DEFAULT_SETTINGS
    batches = available_batches(
        session,
        product_id=product_id,
        location_id=location_id,
        exclude_expired=settings.exclude_expired,
        as_of=today or business_today(),
        lock=True,
    )
    slices, shortfall = plan_fifo(batches, quantity)
    if shortfall > 0:
        raise InsufficientStock(
            product_id=product_id,
            location_id=location_id,
            requested=quantity,
            available=quantity - shortfall,
        )

    lines = []
    for batch, take in slices:
        line = AllocationLine(
            batch_id=batch.id,
            product_id=product_id,
            location_id=location_id,
            quantity=take,
            unit_cost_cents=batch.unit_cost_cents,
            assignment_line_id=assignment_line_id,
            sale_id=sale_id,
            reference=reference,
        )
        session.add(line)
        session.flush()
        decrement_batch_locked(
            session,
            batch,
            take,
            movement_type=MOVEMENT_ALLOCATE,
            reference_type="allocation_line",
            reference_id=line.id,
        )
        lines.append(line)
    return lines


def allocate_stock(
    session,
    *,
    product_id: int,
    location_id: int,
    quantity,
    reference: str | None = None,
    settings: LedgerSettings | None = None,
) -> list[AllocationLine]:
    """
    Take quantity units of a product out of a location's pool, oldest first.

    Returns the ordered AllocationLines covering exactly quantity units, or
    raises InsufficientStock (carrying the shortfall) with nothing decremented.
    """
    settings = settings or DEFAULT_SETTINGS
    quantity = require_positive_int(quantity, "quantity")

    def _op():
        begin_serialized(session)
        get_product(session, product_id, require_active=True)
        get_location(session, location_id)
        lines = allocate_locked(
            session,
            product_id=product_id,
            location_id=location_id,
            quantity=quantity,
            settings=settings,
            reference=reference,
        )
        session.commit()
        return lines

    return run_with_retry(session, _op, attempts=settings.retry_attempts, backoff_base=settings.retry_backoff)
