# backend/rxledger/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/rxledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///rxledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Allocator skips batches whose expiry date is on or before today
    LEDGER_EXCLUDE_EXPIRED = _env_flag("LEDGER_EXCLUDE_EXPIRED", True)

    # Zero padding of the per-location daily transaction sequence
    LEDGER_TXN_NUMBER_PAD = int(os.environ.get("LEDGER_TXN_NUMBER_PAD", "4"))

    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
    LEDGER_RETRY_BACKOFF = float(os.environ.get("LEDGER_RETRY_BACKOFF", "0.1"))

    # A cheque dated on the day it is recorded marks its transaction PAID
    LEDGER_CHEQUE_TODAY_SETTLES = _env_flag("LEDGER_CHEQUE_TODAY_SETTLES", True)

    # Whether a sale of each type is recorded fully paid at creation
    LEDGER_DEFAULT_SETTLEMENT = {
        "RETAIL": True,
        "BULK": True,
        "CONSIGNMENT": False,
        "AGENT": False,
    }


@dataclass(frozen=True)
class LedgerSettings:
    """
    Ledger tunables handed to service functions.

    Services never read the Flask config directly; callers build this from
    the app config (or use the defaults outside an app context).
    """
    exclude_expired: bool = True
    txn_number_pad: int = 4
    retry_attempts: int = 3
    retry_backoff: float = 0.1
    cheque_today_settles: bool = True
    default_settlement: Mapping[str, bool] = field(
        default_factory=lambda: dict(Config.LEDGER_DEFAULT_SETTLEMENT)
    )

    @classmethod
    def from_config(cls, config: Mapping) -> "LedgerSettings":
        return cls(
            exclude_expired=bool(config.get("LEDGER_EXCLUDE_EXPIRED", True)),
            txn_number_pad=int(config.get("LEDGER_TXN_NUMBER_PAD", 4)),
            retry_attempts=int(config.get("LEDGER_RETRY_ATTEMPTS", 3)),
            retry_backoff=float(config.get("LEDGER_RETRY_BACKOFF", 0.1)),
            cheque_today_settles=bool(config.get("LEDGER_CHEQUE_TODAY_SETTLES", True)),
            default_settlement=dict(
                config.get("LEDGER_DEFAULT_SETTLEMENT", Config.LEDGER_DEFAULT_SETTLEMENT)
            ),
        )

    def settles_by_default(self, transaction_type: str) -> bool:
        return bool(self.default_settlement.get(transaction_type, False))


DEFAULT_SETTINGS = LedgerSettings()
