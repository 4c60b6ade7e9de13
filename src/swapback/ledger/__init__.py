"""Ledger module for settlements, failed attempts and payout intents."""

from swapback.ledger.database import get_db, init_db
from swapback.ledger.models import (
    FailedAttempt,
    IntentStatus,
    PayoutIntent,
    SwapRecord,
)
from swapback.ledger.repository import LedgerRepository
from swapback.ledger.store import LedgerStore

__all__ = [
    # Models
    "SwapRecord",
    "FailedAttempt",
    "PayoutIntent",
    # Enums
    "IntentStatus",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
    "LedgerStore",
]
