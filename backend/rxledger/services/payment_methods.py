# Overview: Payment method variants; plain reference methods versus the deferred cheque instrument.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, ClassVar, Mapping, Union

from ..config import LedgerSettings
from ..errors import ValidationError
from ..models import Payment
from ..validation import optional_date


# =============================================================================
# METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_GCASH = "GCASH"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_CARD = "CARD"
METHOD_CHEQUE = "CHEQUE"

REFERENCE_METHODS = (METHOD_CASH, METHOD_GCASH, METHOD_BANK_TRANSFER, METHOD_CARD)
PAYMENT_METHODS = REFERENCE_METHODS + (METHOD_CHEQUE,)


@dataclass(frozen=True)
class ReferencePayment:
    """Money received on the spot, with an optional reference number."""
    method: str
    reference_number: str | None = None
    remarks: str | None = None

    def settles_on(self, today: date, settings: LedgerSettings) -> bool:
        return False

    def apply_to(self, payment: Payment) -> None:
        payment.method = self.method
        payment.reference_number = self.reference_number
        payment.remarks = self.remarks


@dataclass(frozen=True)
class ChequePayment:
    """
    Deferred instrument. Counts toward the amount paid as soon as recorded;
    a cheque dated on the recording day also marks the transaction PAID.
    """
    cheque_number: str
    bank_name: str
    cheque_date: date
    remarks: str | None = None
    method: ClassVar[str] = METHOD_CHEQUE

    def settles_on(self, today: date, settings: LedgerSettings) -> bool:
        return settings.cheque_today_settles and self.cheque_date == today

    def apply_to(self, payment: Payment) -> None:
        payment.method = self.method
        payment.cheque_number = self.cheque_number
        payment.bank_name = self.bank_name
        payment.cheque_date = self.cheque_date
        payment.remarks = self.remarks


PaymentMethod = Union[ReferencePayment, ChequePayment]


def _text(details: Mapping, key: str) -> str | None:
    value = details.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_payment_method(method: Any, details: Mapping | None = None) -> PaymentMethod:
    """
    Build the payment method variant from a method name and its details.

    Reference methods accept reference_number; CHEQUE requires cheque_number,
    bank_name and cheque_date (YYYY-MM-DD). remarks is accepted by all.
    """
    if isinstance(method, (ReferencePayment, ChequePayment)):
        return method
    name = str(method or "").strip().upper()
    if name not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}. Must be one of {', '.join(PAYMENT_METHODS)}",
            {"method": method},
        )
    details = details or {}
    if not isinstance(details, Mapping):
        raise ValidationError("payment details must be an object", {"method": name})

    if name == METHOD_CHEQUE:
        cheque_number = _text(details, "cheque_number")
        bank_name = _text(details, "bank_name")
        cheque_date = optional_date(details.get("cheque_date"), "cheque_date")
        missing = [
            key for key, value in (
                ("cheque_number", cheque_number),
                ("bank_name", bank_name),
                ("cheque_date", cheque_date),
            ) if value is None
        ]
        if missing:
            raise ValidationError(
                f"cheque payment requires {', '.join(missing)}",
                {"method": name, "missing": missing},
            )
        return ChequePayment(
            cheque_number=cheque_number,
            bank_name=bank_name,
            cheque_date=cheque_date,
            remarks=_text(details, "remarks"),
        )

    return ReferencePayment(
        method=name,
        reference_number=_text(details, "reference_number"),
        remarks=_text(details, "remarks"),
    )
