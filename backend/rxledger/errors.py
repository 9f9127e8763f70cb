# Overview: Typed ledger failures returned to callers; each carries a stable code and HTTP status.

"""
Ledger error kinds

Every failure the core reports is one of the classes below. Services raise
them from inside a unit of work; the unit of work rolls back before the error
reaches the caller, so a raised LedgerError always means "nothing changed".
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger failures."""
    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Malformed caller input (wrong types, unknown methods, bad dates)."""
    code = "VALIDATION_ERROR"


class InvalidQuantity(LedgerError):
    """Zero or negative quantity (or amount) supplied."""
    code = "INVALID_QUANTITY"

    def __init__(self, field: str, value):
        super().__init__(
            f"{field} must be a positive integer",
            details={"field": field, "value": value},
        )
        self.field = field
        self.value = value


class NotFound(LedgerError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id=None, **extra):
        label = f"{entity} {entity_id}" if entity_id is not None else entity
        super().__init__(
            f"{label} not found",
            details={"entity": entity, "id": entity_id, **extra},
        )
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStock(LedgerError):
    """Requested quantity exceeds the eligible batch stock at a location."""
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, *, product_id: int, location_id: int, requested: int, available: int):
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id} at location {location_id}: "
            f"requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "location_id": location_id,
                "requested": requested,
                "available": available,
                "shortfall": self.shortfall,
            },
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class ExceedsBalance(LedgerError):
    """A sale or return quantity exceeds what the party currently holds."""
    code = "EXCEEDS_BALANCE"
    http_status = 409

    def __init__(
        self,
        *,
        action: str,
        product_id: int,
        requested: int,
        current_balance: int,
        line_id: int | None = None,
        batch_id: int | None = None,
    ):
        self.action = action
        self.requested = requested
        self.current_balance = current_balance
        details = {
            "action": action,
            "line_id": line_id,
            "product_id": product_id,
            "requested": requested,
            "current_balance": current_balance,
        }
        if batch_id is not None:
            details["batch_id"] = batch_id
        super().__init__(
            f"Cannot {action} {requested} units of product {product_id}: "
            f"only {current_balance} held",
            details=details,
        )


class OverPayment(LedgerError):
    code = "OVER_PAYMENT"
    http_status = 409

    def __init__(self, *, transaction_id: int, amount_cents: int, remaining_cents: int):
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents
        super().__init__(
            f"Payment of {amount_cents} exceeds remaining balance {remaining_cents} "
            f"on transaction {transaction_id}",
            details={
                "transaction_id": transaction_id,
                "amount_cents": amount_cents,
                "remaining_cents": remaining_cents,
            },
        )


class InvalidState(LedgerError):
    """Operation not allowed in the target record's current state."""
    code = "INVALID_STATE"
    http_status = 409
