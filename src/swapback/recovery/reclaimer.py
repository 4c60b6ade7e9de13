"""Periodic replay of failed settlement attempts."""

import asyncio
import json
import logging

from swapback.chain.events import TransferEvent
from swapback.chain.watcher import EventSink
from swapback.errors import DecodeError, PersistenceError
from swapback.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


class RetryReclaimer:
    """Moves failed attempts back into the swap queue."""

    def __init__(self, store: LedgerStore, sink: EventSink, interval: float = 120.0):
        self.store = store
        self.sink = sink
        self.interval = interval
        self._running = False

    async def reclaim_once(self) -> int:
        """Queue every stored failed attempt and delete the rows that were read.

        Rows written after the read are left for the next run. Returns the
        number of events queued.
        """
        attempts = await self.store.all_failed_attempts()
        if not attempts:
            return 0

        events = []
        for attempt in attempts:
            try:
                events.append(TransferEvent.from_json(attempt.serialized_event))
            except (DecodeError, json.JSONDecodeError, TypeError, ValueError) as e:
                logger.error(f"Discarding unreadable failed attempt {attempt.id}: {e}")

        for event in events:
            self.sink.enqueue(event)

        await self.store.delete_failed_attempts([attempt.id for attempt in attempts])
        logger.info(f"Reclaimed {len(events)} failed transactions")
        return len(events)

    async def run(self) -> None:
        """Reclaim every `interval` seconds until stopped."""
        self._running = True
        logger.info(f"Retry reclaimer running every {self.interval}s")

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.reclaim_once()
            except PersistenceError as e:
                logger.error(f"Reclaim failed: {e}")
            except Exception as e:
                logger.exception(f"Reclaimer error: {e}")

    def stop(self) -> None:
        self._running = False
