# Overview: Append-only assignment history per party; written inside the mutation's unit of work.

from __future__ import annotations

from ..models import AssignmentHistory
"""
Assignment History Invariants (authoritative)

- Append-only: no updates or deletes of existing rows.
- Rows are written inside the same DB transaction as the ledger change they
  record, so a rolled-back mutation leaves no history behind.
- No domain logic here.
"""

ACTION_CREATED = "CREATED"
ACTION_ITEMS_ADDED = "ITEMS_ADDED"
ACTION_SALE_RECORDED = "SALE_RECORDED"
ACTION_ITEMS_RETURNED = "ITEMS_RETURNED"
ACTION_ROLLED_FORWARD = "ROLLED_FORWARD"
ACTION_CLOSED = "CLOSED"


def append_history(
    session,
    *,
    party_id: int,
    action_type: str,
    period_id: int | None = None,
    assignment_line_id: int | None = None,
    product_id: int | None = None,
    sale_id: int | None = None,
    quantity: int | None = None,
    amount_cents: int | None = None,
    note: str | None = None,
) -> AssignmentHistory:
    entry = AssignmentHistory(
        party_id=party_id,
        period_id=period_id,
        assignment_line_id=assignment_line_id,
        product_id=product_id,
        sale_id=sale_id,
        action_type=action_type,
        quantity=quantity,
        amount_cents=amount_cents,
        note=note,
    )
    session.add(entry)
    return entry


def list_history(
    session,
    *,
    party_id: int,
    period_id: int | None = None,
    action_type: str | None = None,
    limit: int = 200,
) -> list[AssignmentHistory]:
    query = session.query(AssignmentHistory).filter(AssignmentHistory.party_id == party_id)
    if period_id is not None:
        query = query.filter(AssignmentHistory.period_id == period_id)
    if action_type:
        query = query.filter(AssignmentHistory.action_type == action_type)
    return query.order_by(AssignmentHistory.id.desc()).limit(limit).all()
