from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


class TransactionSequence(db.Model):
    """
    Per-location, per-day counter for transaction numbers.

    One row per prefix ("<LOCATION CODE>-<YYYYMMDD>"). next_number is bumped
    with a single UPDATE inside the sale's unit of work, so two concurrent
    sales can never read the same value.
    """
    __tablename__ = "transaction_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_transaction_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    business_day = db.Column(db.Date, nullable=False)
    prefix = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class SaleTransaction(db.Model):
    """
    Immutable sale header.

    TRANSACTION TYPES:
    - RETAIL / BULK: sold straight from the location's stock pool
    - CONSIGNMENT: sold out of a customer's consignment period
    - AGENT: sold out of an agent's running balance

    Only payment_status and total_paid_cents change after creation, and only
    through the payment service (derived from the payment rows).
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_sale_transactions_number"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sale_transactions_total_nonneg"),
        db.Index("ix_sale_transactions_location_created", "location_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(64), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=True, index=True)
    period_id = db.Column(db.Integer, db.ForeignKey("consignment_periods.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    # Payment method chosen at sale time (CASH, GCASH, CHEQUE ...)
    payment_type = db.Column(db.String(32), nullable=False, default="CASH")

    # Payment tracking (all amounts in cents)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="UNPAID", index=True)  # UNPAID, PARTIAL, PAID
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party")
    items = db.relationship(
        "SaleLineItem",
        back_populates="sale",
        lazy=True,
        order_by="SaleLineItem.id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="sale",
        lazy=True,
        order_by="Payment.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_cents(self) -> int:
        return max(self.total_amount_cents - self.total_paid_cents, 0)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "transaction_type": self.transaction_type,
            "location_id": self.location_id,
            "party_id": self.party_id,
            "period_id": self.period_id,
            "customer_name": self.customer_name,
            "payment_type": self.payment_type,
            "total_amount_cents": self.total_amount_cents,
            "payment_status": self.payment_status,
            "total_paid_cents": self.total_paid_cents,
            "balance_cents": self.balance_cents,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleLineItem(db.Model):
    """One batch slice of a sold item. An item spanning two batches yields two rows."""
    __tablename__ = "sale_line_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_line_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True, index=True)
    assignment_line_id = db.Column(db.Integer, db.ForeignKey("assignment_lines.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("SaleTransaction", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "assignment_line_id": self.assignment_line_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Money received against a sale transaction.

    METHODS:
    - CASH, GCASH, BANK_TRANSFER, CARD: optional reference number
    - CHEQUE: cheque number, bank name and cheque date

    Rows are appended by record_payment and deleted by remove_payment; the
    PaymentEvent log keeps the audit trail of both.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    # Reference info (GCash ref, transfer ref, card auth code)
    reference_number = db.Column(db.String(128), nullable=True)

    # Cheque fields
    cheque_number = db.Column(db.String(64), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    cheque_date = db.Column(db.Date, nullable=True)

    # A cheque dated on the recording day settles the whole transaction
    settles_transaction = db.Column(db.Boolean, nullable=False, default=False)

    remarks = db.Column(db.String(255), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship("SaleTransaction", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference_number": self.reference_number,
            "cheque_number": self.cheque_number,
            "bank_name": self.bank_name,
            "cheque_date": to_iso_date(self.cheque_date),
            "settles_transaction": self.settles_transaction,
            "remarks": self.remarks,
            "recorded_at": to_utc_z(self.recorded_at),
        }


class PaymentEvent(db.Model):
    """
    Append-only log of payment changes.

    payment_id is not a foreign key: the payment row is gone
    after a REMOVED event.
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.Index("ix_payment_events_sale_occurred", "sale_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False)

    event_type = db.Column(db.String(16), nullable=False)  # RECORDED, REMOVED
    method = db.Column(db.String(32), nullable=False)
    # Signed: negative for REMOVED
    amount_cents = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "sale_id": self.sale_id,
            "event_type": self.event_type,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
