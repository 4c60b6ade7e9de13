"""Error kinds raised while settling a transfer.

Every failure in the settlement pipeline belongs to exactly one kind. The
swap queue records the kind alongside the message when it writes a failed
attempt.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of settlement failure kinds."""

    DECODE = "decode"
    PRICE_RESOLUTION = "price_resolution"
    ARITHMETIC = "arithmetic"
    EXECUTION = "execution"
    PERSISTENCE = "persistence"


class SettlementError(Exception):
    """Base class for settlement failures."""

    kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(SettlementError):
    """Log does not match the Transfer signature or the listener address."""

    kind = ErrorKind.DECODE


class PriceResolutionError(SettlementError):
    """No usable price could be resolved for the event."""

    kind = ErrorKind.PRICE_RESOLUTION


class ArithmeticSettlementError(SettlementError):
    """Fee or payout cannot be computed (zero or invalid price)."""

    kind = ErrorKind.ARITHMETIC


class ExecutionError(SettlementError):
    """Payout could not be signed, broadcast or confirmed."""

    kind = ErrorKind.EXECUTION


class RpcError(ExecutionError):
    """JSON-RPC transport or protocol error."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class PersistenceError(SettlementError):
    """Ledger store read or write failed."""

    kind = ErrorKind.PERSISTENCE


class DuplicateSwapError(PersistenceError):
    """A swap record already exists for the incoming transaction hash."""


class StaleNonceError(ExecutionError):
    """A stored payout can never be mined: its nonce was used by another transaction."""
