"""Fee/payout arithmetic and the settlement queue."""

from swapback.settlement.calculator import Settlement, calculate_settlement, format_units
from swapback.settlement.queue import OutcomeStatus, SettlementOutcome, SettlementState, SwapQueue

__all__ = [
    "OutcomeStatus",
    "Settlement",
    "SettlementOutcome",
    "SettlementState",
    "SwapQueue",
    "calculate_settlement",
    "format_units",
]
