"""Source and target chain access."""

from swapback.chain.events import TRANSFER_TOPIC, DecodedTransfer, TransferEvent, decode_transfer
from swapback.chain.executor import SignedPayout, SwapExecutor
from swapback.chain.rpc import JsonRpcClient
from swapback.chain.watcher import ChainWatcher

__all__ = [
    "TRANSFER_TOPIC",
    "ChainWatcher",
    "DecodedTransfer",
    "JsonRpcClient",
    "SignedPayout",
    "SwapExecutor",
    "TransferEvent",
    "decode_transfer",
]
