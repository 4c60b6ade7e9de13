"""Live watcher for USDC transfers to the listener address.

Polls the source chain head and pulls every log emitted by the token
contract for the new blocks. Only Transfer logs addressed to the listener are
queued; everything else is dropped.
"""

import asyncio
import logging
from typing import Optional, Protocol

from swapback.chain.events import TransferEvent, decode_transfer
from swapback.chain.rpc import JsonRpcClient
from swapback.errors import DecodeError, RpcError

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def enqueue(self, event: TransferEvent) -> None: ...


class ChainWatcher:
    """Feeds newly mined transfer events into the swap queue."""

    def __init__(
        self,
        rpc: JsonRpcClient,
        sink: EventSink,
        token_address: str,
        listener_address: str,
        poll_interval: float = 4.0,
        max_block_range: int = 2000,
    ):
        self.rpc = rpc
        self.sink = sink
        self.token_address = token_address
        self.listener_address = listener_address
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        self._next_block: Optional[int] = None
        self._head: Optional[int] = None
        self._backfill = False
        self._backfill_to: Optional[int] = None
        self._running = False

    @property
    def next_block(self) -> Optional[int]:
        return self._next_block

    def start_from(self, block_number: int, backfill: bool = False) -> None:
        """Set the first block the watcher will read.

        With `backfill`, transfers up to the head seen on the next poll are
        priced at their own block instead of at spot.
        """
        self._next_block = block_number
        self._backfill = backfill
        self._backfill_to = None

    def handle_log(self, log: dict) -> bool:
        """Queue a log if it is a Transfer to the listener. Returns True if queued."""
        if log.get("removed"):
            return False
        try:
            transfer = decode_transfer(log, recipient=self.listener_address)
        except DecodeError as e:
            logger.debug(f"Dropping log {log.get('transactionHash')}: {e}")
            return False

        block_number = None
        if self._backfill_to is not None and transfer.block_number <= self._backfill_to:
            block_number = transfer.block_number

        self.sink.enqueue(TransferEvent(log=log, block_number=block_number))
        logger.info(
            f"Transfer of {transfer.value} from {transfer.sender} "
            f"({transfer.transaction_hash}) added to the queue"
        )
        return True

    async def poll_once(self) -> int:
        """Read the next block range. Returns the number of events queued."""
        head = await self.rpc.block_number()
        self._head = head
        if self._backfill and self._backfill_to is None:
            self._backfill_to = head

        if self._next_block is None:
            # Nothing to catch up on: start with the next block
            self._next_block = head + 1
            return 0
        if head < self._next_block:
            return 0

        to_block = min(head, self._next_block + self.max_block_range - 1)
        logs = await self.rpc.get_logs(self.token_address, self._next_block, to_block)

        queued = 0
        for log in logs:
            if self.handle_log(log):
                queued += 1

        self._next_block = to_block + 1
        return queued

    async def run(self) -> None:
        """Poll until stopped."""
        self._running = True
        logger.info(
            f"Watching {self.token_address} for transfers to {self.listener_address} "
            f"(interval: {self.poll_interval}s)"
        )

        while self._running:
            try:
                await self.poll_once()
            except RpcError as e:
                logger.error(f"Watcher RPC error: {e}")
                await asyncio.sleep(self.poll_interval)
                continue
            except Exception as e:
                logger.exception(f"Watcher error: {e}")
                await asyncio.sleep(self.poll_interval)
                continue

            # Keep reading without sleeping while behind the head
            if not self.behind_head:
                await asyncio.sleep(self.poll_interval)

    @property
    def behind_head(self) -> bool:
        if self._head is None or self._next_block is None:
            return False
        return self._head >= self._next_block

    def stop(self) -> None:
        """Stop the polling loop."""
        self._running = False
        logger.info("Stopping chain watcher")
