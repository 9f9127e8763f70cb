from __future__ import annotations

from datetime import date

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class StockBatch(db.Model):
    """
    One received lot of a product at one location.

    INVARIANTS:
    - quantity_remaining never goes negative (DB check constraint backs this up)
    - exhausted batches (quantity_remaining = 0) stay for audit and are never
      selected by the allocator again
    - only the allocator, returns and manual removal change quantity_remaining
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.CheckConstraint("quantity_remaining >= 0", name="ck_stock_batches_remaining_nonneg"),
        db.CheckConstraint("quantity_received > 0", name="ck_stock_batches_received_positive"),
        db.Index("ix_stock_batches_product_location", "product_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    batch_no = db.Column(db.String(64), nullable=True)
    supplier_reference = db.Column(db.String(128), nullable=True)
    manufactured_on = db.Column(db.Date, nullable=True)
    expires_on = db.Column(db.Date, nullable=True)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    quantity_received = db.Column(db.Integer, nullable=False)
    quantity_remaining = db.Column(db.Integer, nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def is_expired(self, as_of: date) -> bool:
        return self.expires_on is not None and self.expires_on <= as_of

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "batch_no": self.batch_no,
            "supplier_reference": self.supplier_reference,
            "manufactured_on": to_iso_date(self.manufactured_on),
            "expires_on": to_iso_date(self.expires_on),
            "unit_cost_cents": self.unit_cost_cents,
            "quantity_received": self.quantity_received,
            "quantity_remaining": self.quantity_remaining,
            "received_at": to_utc_z(self.received_at),
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only audit of every batch quantity change.

    MOVEMENT TYPES:
    - RECEIVE: new batch received
    - ALLOCATE: taken by the FIFO allocator (assignment or direct sale)
    - RETURN: returned by a party, credited back to its original batch
    - REMOVE: manual removal (damage, expired, lost)
    - TRANSFER_OUT / TRANSFER_IN: manual move to another location
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_location", "product_id", "location_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # What caused the movement (assignment_line, sale, allocation, removal ...)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(32), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("StockBatch", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reason": self.reason,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class AllocationLine(db.Model):
    """
    Immutable record of one FIFO slice: which batch, how many, at what cost.

    Owned by the assignment line or sale transaction it was allocated for
    (both null for a bare allocation requested by a caller).
    """
    __tablename__ = "allocation_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_allocation_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    assignment_line_id = db.Column(db.Integer, db.ForeignKey("assignment_lines.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True, index=True)
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("StockBatch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "assignment_line_id": self.assignment_line_id,
            "sale_id": self.sale_id,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
