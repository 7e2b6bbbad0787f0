# backend/omnistock/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///omnistock.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # How long a transaction may wait on a row lock before failing with LockTimeout
    LOCK_TIMEOUT_MS = int(os.environ.get("LOCK_TIMEOUT_MS", "5000"))

    # Deadlock / busy retries before the error is surfaced to the caller
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))

    # Minimum zero-padded width of the sequence part of document numbers
    SEQUENCE_MIN_WIDTH = 4

    # When True, purchase-decision (backorder) lines are still reported by batch_check_stock
    BACKORDER_STOCK_PRECHECK = _env_bool("BACKORDER_STOCK_PRECHECK", False)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
