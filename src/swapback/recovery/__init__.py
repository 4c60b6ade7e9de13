"""Recovery of missed and failed settlements."""

from swapback.recovery.reclaimer import RetryReclaimer
from swapback.recovery.scanner import GENESIS_BLOCK, RecoveryScanner, ScanResult

__all__ = ["GENESIS_BLOCK", "RecoveryScanner", "RetryReclaimer", "ScanResult"]
