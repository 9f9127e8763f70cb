from __future__ import annotations

from ..extensions import db
from ..periods import Period
from ..time_utils import to_utc_z


PERIOD_ACTIVE = "ACTIVE"
PERIOD_CLOSED = "CLOSED"


class ConsignmentPeriod(db.Model):
    """
    One customer's consignment for one calendar month.

    The aggregate columns are the sum of the period's assignment lines. They
    are never written by callers; the consignment service recomputes them in
    the same unit of work as every line or payment change.
    """
    __tablename__ = "consignment_periods"
    __table_args__ = (
        db.UniqueConstraint("party_id", "year", "month", name="uq_consignment_periods_party_month"),
        db.CheckConstraint("month BETWEEN 1 AND 12", name="ck_consignment_periods_month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    consignment_number = db.Column(db.String(64), nullable=False, unique=True)

    month = db.Column(db.Integer, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PERIOD_ACTIVE, index=True)

    # Quantity aggregates
    previous_balance_qty = db.Column(db.Integer, nullable=False, default=0)
    added_qty = db.Column(db.Integer, nullable=False, default=0)
    sold_qty = db.Column(db.Integer, nullable=False, default=0)
    returned_qty = db.Column(db.Integer, nullable=False, default=0)
    current_balance_qty = db.Column(db.Integer, nullable=False, default=0)

    # Money aggregates (cents)
    total_consigned_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_sold_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)

    rolled_from_period_id = db.Column(db.Integer, db.ForeignKey("consignment_periods.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party", backref=db.backref("consignment_periods", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def period(self) -> Period:
        return Period.of(self.month, self.year)

    @property
    def is_closed(self) -> bool:
        return self.status == PERIOD_CLOSED

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "party_id": self.party_id,
            "location_id": self.location_id,
            "consignment_number": self.consignment_number,
            "month": self.month,
            "year": self.year,
            "period_label": self.period.label,
            "status": self.status,
            "previous_balance_qty": self.previous_balance_qty,
            "added_qty": self.added_qty,
            "sold_qty": self.sold_qty,
            "returned_qty": self.returned_qty,
            "current_balance_qty": self.current_balance_qty,
            "total_consigned_value_cents": self.total_consigned_value_cents,
            "total_sold_value_cents": self.total_sold_value_cents,
            "total_paid_cents": self.total_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "rolled_from_period_id": self.rolled_from_period_id,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class AssignmentLine(db.Model):
    """
    Stock a party holds for one product (per period for consignment customers).

    CONSERVATION (checked in the service after every mutation and by the DB):
        current_balance = previous_balance + quantity_added
                          - quantity_sold - quantity_returned
        current_balance >= 0

    Agents have period_id NULL and previous_balance 0. Lines are never deleted;
    a zero balance line remains as history.
    """
    __tablename__ = "assignment_lines"
    __table_args__ = (
        db.UniqueConstraint("party_id", "period_id", "product_id", name="uq_assignment_lines_party_period_product"),
        db.CheckConstraint("current_balance >= 0", name="ck_assignment_lines_balance_nonneg"),
        db.CheckConstraint(
            "previous_balance >= 0 AND quantity_added >= 0 AND quantity_sold >= 0 AND quantity_returned >= 0",
            name="ck_assignment_lines_counters_nonneg",
        ),
        db.CheckConstraint(
            "current_balance = previous_balance + quantity_added - quantity_sold - quantity_returned",
            name="ck_assignment_lines_conservation",
        ),
        db.Index("ix_assignment_lines_party_product", "party_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    period_id = db.Column(db.Integer, db.ForeignKey("consignment_periods.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Price agreed at the latest assignment
    unit_price_cents = db.Column(db.Integer, nullable=False)

    previous_balance = db.Column(db.Integer, nullable=False, default=0)
    quantity_added = db.Column(db.Integer, nullable=False, default=0)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)
    quantity_returned = db.Column(db.Integer, nullable=False, default=0)
    current_balance = db.Column(db.Integer, nullable=False, default=0)

    total_assigned_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_sold_value_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party")
    product = db.relationship("Product")
    period = db.relationship(
        "ConsignmentPeriod",
        foreign_keys=[period_id],
        backref=db.backref("lines", lazy=True, order_by="AssignmentLine.id"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def expected_balance(self) -> int:
        return self.previous_balance + self.quantity_added - self.quantity_sold - self.quantity_returned

    def to_dict(self, include_holdings: bool = False) -> dict:
        data = {
            "id": self.id,
            "party_id": self.party_id,
            "period_id": self.period_id,
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "previous_balance": self.previous_balance,
            "quantity_added": self.quantity_added,
            "quantity_sold": self.quantity_sold,
            "quantity_returned": self.quantity_returned,
            "current_balance": self.current_balance,
            "total_assigned_value_cents": self.total_assigned_value_cents,
            "total_sold_value_cents": self.total_sold_value_cents,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_holdings:
            data["holdings"] = [h.to_dict() for h in self.holdings]
        return data


class AssignmentHolding(db.Model):
    """
    Batch provenance of an assignment line.

    quantity_allocated counts units placed on the line from this batch,
    including units carried in by a period roll-forward. The outstanding
    quantities of a line's holdings always sum to its current_balance.
    """
    __tablename__ = "assignment_holdings"
    __table_args__ = (
        db.UniqueConstraint("assignment_line_id", "batch_id", name="uq_assignment_holdings_line_batch"),
        db.CheckConstraint(
            "quantity_allocated - quantity_sold - quantity_returned >= 0",
            name="ck_assignment_holdings_outstanding_nonneg",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_line_id = db.Column(db.Integer, db.ForeignKey("assignment_lines.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=False, index=True)

    quantity_allocated = db.Column(db.Integer, nullable=False, default=0)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)
    quantity_returned = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    line = db.relationship(
        "AssignmentLine",
        backref=db.backref("holdings", lazy=True, order_by="AssignmentHolding.id"),
    )
    batch = db.relationship("StockBatch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_allocated - self.quantity_sold - self.quantity_returned

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_line_id": self.assignment_line_id,
            "batch_id": self.batch_id,
            "batch_no": self.batch.batch_no if self.batch else None,
            "quantity_allocated": self.quantity_allocated,
            "quantity_sold": self.quantity_sold,
            "quantity_returned": self.quantity_returned,
            "quantity_outstanding": self.quantity_outstanding,
        }


class AssignmentHistory(db.Model):
    """
    Append-only history of ledger actions per party.

    ACTION TYPES: CREATED, ITEMS_ADDED, SALE_RECORDED, ITEMS_RETURNED,
    ROLLED_FORWARD, CLOSED

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "assignment_history"
    __table_args__ = (
        db.Index("ix_assignment_history_party_occurred", "party_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    period_id = db.Column(db.Integer, db.ForeignKey("consignment_periods.id"), nullable=True, index=True)
    assignment_line_id = db.Column(db.Integer, db.ForeignKey("assignment_lines.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True)

    action_type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_id": self.party_id,
            "period_id": self.period_id,
            "assignment_line_id": self.assignment_line_id,
            "product_id": self.product_id,
            "sale_id": self.sale_id,
            "action_type": self.action_type,
            "quantity": self.quantity,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
