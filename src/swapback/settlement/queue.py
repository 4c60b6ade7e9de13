"""Swap queue: the single consumer that settles detected transfers.

Events from the chain watcher, the recovery scanner and the retry reclaimer
all land in one FIFO queue. A single worker settles them one at a time, so at
most one event is ever between price resolution and recording. That keeps
payout nonces sequential and the ledger free of interleaved writes.

Settlement of one event:

    decode -> skip if already recorded -> resolve price -> compute payout
    -> sign -> store payout intent -> broadcast -> confirm -> record

A failure before confirmation is written to the failed attempts table for
the reclaimer to replay. A signed payout is always stored as an intent before
broadcast, so a replay resumes that payout instead of signing a second one.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from swapback.chain.events import DecodedTransfer, TransferEvent, decode_transfer
from swapback.chain.executor import SwapExecutor
from swapback.errors import (
    DuplicateSwapError,
    ErrorKind,
    PersistenceError,
    PriceResolutionError,
    SettlementError,
    StaleNonceError,
)
from swapback.ledger.models import IntentStatus, PayoutIntent
from swapback.ledger.store import LedgerStore
from swapback.pricing.resolver import PriceResolver
from swapback.settlement.calculator import Settlement, calculate_settlement

logger = logging.getLogger(__name__)


class SettlementState(str, Enum):
    """Where the event currently being settled is."""

    IDLE = "idle"
    PENDING = "pending"
    RESOLVING = "resolving"
    COMPUTING = "computing"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    RECORDED = "recorded"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    RECORDED = "recorded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SettlementOutcome:
    """Result of processing one queued event."""

    event: TransferEvent
    status: OutcomeStatus
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    settlement: Optional[Settlement] = None
    outgoing_transaction_hash: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.RECORDED


class SwapQueue:
    """FIFO settlement queue with exactly one consumer."""

    def __init__(
        self,
        store: LedgerStore,
        resolver: PriceResolver,
        executor: SwapExecutor,
        listener_address: str,
        on_outcome: Optional[Callable[[SettlementOutcome], None]] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.executor = executor
        self.listener_address = listener_address
        self.on_outcome = on_outcome
        self._queue: asyncio.Queue[TransferEvent] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._state = SettlementState.IDLE
        self._current: Optional[TransferEvent] = None
        self.processed = 0

    @property
    def state(self) -> SettlementState:
        return self._state

    @property
    def current(self) -> Optional[TransferEvent]:
        """Event being settled right now, if any."""
        return self._current

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, event: TransferEvent) -> None:
        """Append an event to the tail of the queue."""
        self._queue.put_nowait(event)
        logger.debug(f"Queued {event.transaction_hash} ({self._queue.qsize()} pending)")

    def enqueue_many(self, events: Iterable[TransferEvent]) -> int:
        count = 0
        for event in events:
            self.enqueue(event)
            count += 1
        return count

    def start(self) -> asyncio.Task:
        """Start the consumer. Calling it again while running is a no-op."""
        if not self.running:
            self._task = asyncio.create_task(self.run())
            logger.info("Swap queue started")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Swap queue stopped")

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def run(self) -> None:
        """Consume events forever, one at a time."""
        while True:
            event = await self._queue.get()
            try:
                await self.process(event)
            except Exception as e:
                # process() reports its own failures; this only keeps the worker alive
                logger.exception(f"Unhandled error settling {event.transaction_hash}: {e}")
            finally:
                self._queue.task_done()

    async def process(self, event: TransferEvent) -> SettlementOutcome:
        """Settle one event and report what happened."""
        self._current = event
        self._state = SettlementState.PENDING
        try:
            outcome = await self._settle(event)
        except SettlementError as e:
            outcome = await self._fail(event, e.kind, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error settling {event.transaction_hash}")
            outcome = await self._fail(event, ErrorKind.EXECUTION, str(e))
        finally:
            self._current = None

        self._state = SettlementState.IDLE
        self.processed += 1
        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    async def _settle(self, event: TransferEvent) -> SettlementOutcome:
        transfer = decode_transfer(event.log, recipient=self.listener_address)

        if await self.store.exists_by_incoming_hash(transfer.transaction_hash):
            logger.info(f"Transfer {transfer.transaction_hash} already settled, skipping")
            return SettlementOutcome(event=event, status=OutcomeStatus.SKIPPED)

        intent = await self.store.get_intent(transfer.transaction_hash)
        if intent is not None and intent.status == IntentStatus.SIGNED:
            outcome = await self._resume(event, transfer, intent)
            if outcome is not None:
                return outcome

        self._state = SettlementState.RESOLVING
        price = await self.resolver.resolve(event.block_number)
        if price <= 0:
            raise PriceResolutionError(
                f"No ARB price for {transfer.transaction_hash} (block={event.block_number})"
            )

        self._state = SettlementState.COMPUTING
        settlement = calculate_settlement(transfer.value, price)

        self._state = SettlementState.SUBMITTING
        signed = await self.executor.sign_transfer(transfer.sender, settlement.payout)
        await self.store.record_intent(
            incoming_transaction_hash=transfer.transaction_hash,
            recipient=signed.recipient,
            amount=settlement.payout,
            usdc_received=settlement.received,
            fee=settlement.fee,
            arb_price=settlement.price,
            block_number=transfer.block_number,
            serialized_event=self._replay_event(event).to_json(),
            outgoing_transaction_hash=signed.tx_hash,
            raw_transaction=signed.raw_transaction,
            nonce=signed.nonce,
        )
        tx_hash = await self.executor.submit(signed)
        logger.info(f"Payout {tx_hash} sent to {transfer.sender}")

        self._state = SettlementState.CONFIRMING
        confirmed = await self.executor.wait_for_confirmation(tx_hash)

        return await self._record(
            event,
            transfer,
            settlement.payout,
            settlement.price,
            settlement.fee,
            confirmed,
            settlement=settlement,
        )

    async def _resume(
        self, event: TransferEvent, transfer: DecodedTransfer, intent: PayoutIntent
    ) -> Optional[SettlementOutcome]:
        """Finish a payout signed by an earlier attempt.

        Returns None when the stored payout can never land and a fresh one
        must be signed.
        """
        tx_hash = intent.outgoing_transaction_hash
        logger.info(f"Resuming payout {tx_hash} for {transfer.transaction_hash}")

        self._state = SettlementState.SUBMITTING
        status = await self.executor.receipt_status(tx_hash)
        if status is None:
            try:
                tx_hash = await self.executor.broadcast(intent.raw_transaction, tx_hash)
            except StaleNonceError:
                if await self.executor.receipt_status(tx_hash) is None:
                    logger.warning(f"Payout {tx_hash} was dropped, signing a new one")
                    return None
            self._state = SettlementState.CONFIRMING
            await self.executor.wait_for_confirmation(tx_hash)
        elif status is False:
            logger.warning(f"Payout {tx_hash} reverted, signing a new one")
            return None

        return await self._record(
            event,
            transfer,
            intent.amount,
            Decimal(intent.arb_price),
            intent.fee,
            tx_hash,
        )

    async def _record(
        self,
        event: TransferEvent,
        transfer: DecodedTransfer,
        arb_amount: int,
        arb_price: Decimal,
        fee: int,
        outgoing_transaction_hash: str,
        settlement: Optional[Settlement] = None,
    ) -> SettlementOutcome:
        # The payout is confirmed at this point: a failure here must not be
        # replayed as a failed attempt. The signed intent stays open instead.
        try:
            await self.store.insert_swap_record(
                sender=transfer.sender,
                usdc_received=transfer.value,
                arb_amount=arb_amount,
                arb_price=arb_price,
                fee=fee,
                block_number=transfer.block_number,
                incoming_transaction_hash=transfer.transaction_hash,
                outgoing_transaction_hash=outgoing_transaction_hash,
            )
        except DuplicateSwapError:
            logger.warning(f"Swap for {transfer.transaction_hash} was recorded concurrently")
            return SettlementOutcome(event=event, status=OutcomeStatus.SKIPPED)
        except PersistenceError as e:
            self._state = SettlementState.FAILED
            logger.error(
                f"Payout {outgoing_transaction_hash} confirmed but recording "
                f"{transfer.transaction_hash} failed: {e.message}"
            )
            return SettlementOutcome(
                event=event,
                status=OutcomeStatus.FAILED,
                error_kind=ErrorKind.PERSISTENCE,
                message=e.message,
                settlement=settlement,
                outgoing_transaction_hash=outgoing_transaction_hash,
            )

        self._state = SettlementState.RECORDED
        logger.info(
            f"Recorded swap {transfer.transaction_hash} -> {outgoing_transaction_hash} "
            f"({arb_amount} ARB wei to {transfer.sender})"
        )
        return SettlementOutcome(
            event=event,
            status=OutcomeStatus.RECORDED,
            settlement=settlement,
            outgoing_transaction_hash=outgoing_transaction_hash,
        )

    async def _fail(self, event: TransferEvent, kind: ErrorKind, message: str) -> SettlementOutcome:
        self._state = SettlementState.FAILED
        logger.error(f"Settlement of {event.transaction_hash} failed ({kind.value}): {message}")

        # Logs that are not transfers to the listener can never succeed
        if kind != ErrorKind.DECODE:
            try:
                await self.store.insert_failed_attempt(
                    self._replay_event(event).to_json(), message, kind.value
                )
            except PersistenceError as e:
                logger.error(f"Could not store failed attempt for {event.transaction_hash}: {e}")

        return SettlementOutcome(event=event, status=OutcomeStatus.FAILED, error_kind=kind, message=message)

    @staticmethod
    def _replay_event(event: TransferEvent) -> TransferEvent:
        """Copy of the event pinned to its own block, so a replay uses the historical price."""
        if event.block_number is not None:
            return event
        try:
            return TransferEvent(log=event.log, block_number=event.log_block_number)
        except (KeyError, TypeError, ValueError):
            return event
