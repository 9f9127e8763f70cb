# Overview: Collision-free transaction numbers per location per business day.

from __future__ import annotations

from datetime import date

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..models import Location, SaleTransaction, TransactionSequence
from ..time_utils import business_today


def transaction_prefix(location: Location, day: date) -> str:
    return f"{location.code}-{day:%Y%m%d}"


def format_transaction_number(prefix: str, number: int, pad: int = 4) -> str:
    return f"{prefix}-{number:0{pad}d}"


def _highest_issued(session, prefix: str) -> int:
    """Highest sequence already used under prefix (0 when none)."""
    # Plain substring match; location codes may contain LIKE wildcards
    head = f"{prefix}-"
    rows = (
        session.query(SaleTransaction.transaction_number)
        .filter(func.substr(SaleTransaction.transaction_number, 1, len(head)) == head)
        .all()
    )
    highest = 0
    for (number,) in rows:
        suffix = number[len(prefix) + 1:]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest


def next_transaction_number(
    session,
    *,
    location: Location,
    business_day: date | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next transaction number for a location and day.

    Runs inside the caller's unit of work (no commit): the number is only
    consumed if the sale that uses it commits. The counter row is bumped with
    a single UPDATE, which the database serializes; the first number of a
    day seeds the counter from the highest number already issued.
    """
    day = business_day or business_today()
    prefix = transaction_prefix(location, day)

    stmt = (
        update(TransactionSequence)
        .where(TransactionSequence.prefix == prefix)
        .values(next_number=TransactionSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _bumped() -> int:
        current = (
            session.query(TransactionSequence.next_number)
            .filter_by(prefix=prefix)
            .scalar()
        )
        return current - 1

    result = session.execute(stmt)
    if result.rowcount:
        next_num = _bumped()
    else:
        next_num = _highest_issued(session, prefix) + 1
        try:
            with session.begin_nested():
                session.add(
                    TransactionSequence(
                        location_id=location.id,
                        business_day=day,
                        prefix=prefix,
                        next_number=next_num + 1,
                    )
                )
        except IntegrityError:
            # Another writer created the row first; take the next number from it
            result = session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _bumped()

    return format_transaction_number(prefix, next_num, pad)
