"""Startup recovery of transfers missed while the service was down."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from swapback.chain.events import TRANSFER_TOPIC, TransferEvent, address_topic
from swapback.chain.rpc import JsonRpcClient
from swapback.chain.watcher import EventSink
from swapback.errors import DecodeError
from swapback.ledger.store import LedgerStore

logger = logging.getLogger(__name__)

# First source-chain block that can hold a transfer to the listener
GENESIS_BLOCK = 116103990


@dataclass
class ScanResult:
    events: list[TransferEvent] = field(default_factory=list)
    head: Optional[int] = None
    from_block: Optional[int] = None


def _log_position(log: dict) -> tuple[int, int]:
    event = TransferEvent(log=log)
    return event.log_block_number, event.log_index


class RecoveryScanner:
    """Finds listener transfers with no swap record and queues them.

    Scans from the highest recorded block (or genesis on an empty ledger)
    up to the current head. Signed but unrecorded payouts are picked up as
    well so they can be resumed.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        store: LedgerStore,
        token_address: str,
        listener_address: str,
        genesis_block: int = GENESIS_BLOCK,
        max_block_range: int = 2000,
        concurrency: int = 3,
    ):
        self.rpc = rpc
        self.store = store
        self.token_address = token_address
        self.listener_address = listener_address
        self.genesis_block = genesis_block
        self.max_block_range = max_block_range
        self.concurrency = concurrency

    async def fetch_logs(self, from_block: int, to_block: int) -> list[dict]:
        """All listener Transfer logs in [from_block, to_block], in chain order."""
        topics = [TRANSFER_TOPIC, None, address_topic(self.listener_address)]
        seen: set[tuple[str, int]] = set()
        logs: list[dict] = []

        start = from_block
        while start <= to_block:
            end = min(to_block, start + self.max_block_range - 1)
            chunk = await self.rpc.get_logs(self.token_address, start, end, topics=topics)
            logger.debug(f"Blocks {start}-{end}: {len(chunk)} logs")
            for log in chunk:
                if log.get("removed"):
                    continue
                event = TransferEvent(log=log)
                key = (event.transaction_hash, event.log_index)
                if key in seen:
                    continue
                seen.add(key)
                logs.append(log)
            start = end + 1

        logs.sort(key=_log_position)
        return logs

    async def scan(self, from_block: Optional[int] = None) -> ScanResult:
        """Collect the events that still need settling. Errors propagate."""
        if from_block is None:
            from_block = await self.store.latest_persisted_block() or self.genesis_block
        head = await self.rpc.block_number()
        logger.warning(f"Fetching logs from block {from_block} to {head}")

        logs = await self.fetch_logs(from_block, head) if head >= from_block else []
        logger.warning(f"Fetched {len(logs)} logs")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def unsettled(log: dict) -> Optional[TransferEvent]:
            event = TransferEvent(log=log)
            async with semaphore:
                if await self.store.exists_by_incoming_hash(event.transaction_hash):
                    return None
            return TransferEvent(log=log, block_number=event.log_block_number)

        # gather keeps input order, so events stay in chain order
        results = await asyncio.gather(*(unsettled(log) for log in logs))
        events = [event for event in results if event is not None]

        events = self._merge(await self._intent_events(), events)
        logger.warning(f"Fetched {len(events)} transactions")
        return ScanResult(events=events, head=head, from_block=from_block)

    async def _intent_events(self) -> list[TransferEvent]:
        events = []
        for intent in await self.store.get_unsettled_intents():
            try:
                events.append(TransferEvent.from_json(intent.serialized_event))
            except (DecodeError, ValueError) as e:
                logger.error(
                    f"Cannot restore event for payout intent {intent.incoming_transaction_hash}: {e}"
                )
        return events

    @staticmethod
    def _merge(first: list[TransferEvent], second: list[TransferEvent]) -> list[TransferEvent]:
        """Union by transaction hash, ordered by (block, log index)."""
        merged: dict[str, TransferEvent] = {}
        for event in first + second:
            merged.setdefault(event.transaction_hash, event)
        return sorted(merged.values(), key=lambda e: _log_position(e.log))

    async def run(self, sink: EventSink, attempts: int = 5, backoff: float = 2.0) -> ScanResult:
        """Scan and hand every event to the queue.

        A failed scan is retried with exponential backoff. Never raises: when
        every attempt fails the result has no head, and `from_block` is the
        block the scan should have started at so the watcher can backfill.
        """
        from_block: Optional[int] = None
        for attempt in range(1, attempts + 1):
            try:
                if from_block is None:
                    from_block = await self.store.latest_persisted_block() or self.genesis_block
                result = await self.scan(from_block=from_block)
                break
            except Exception as e:
                logger.error(f"Recovery scan failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    await asyncio.sleep(backoff * 2 ** (attempt - 1))
        else:
            return ScanResult(from_block=from_block or self.genesis_block)

        for event in result.events:
            sink.enqueue(event)
        if result.events:
            logger.info(f"Queued {len(result.events)} recovered transfers")
        return result
