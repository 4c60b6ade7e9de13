"""Tests for the settlement queue."""

import asyncio
import json
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock

import pytest
from web3 import Web3

from swapback.chain.events import TransferEvent
from swapback.chain.executor import SignedPayout
from swapback.errors import ErrorKind, ExecutionError, PersistenceError, StaleNonceError
from swapback.ledger.models import IntentStatus
from swapback.ledger.store import LedgerStore
from swapback.settlement.queue import OutcomeStatus, SettlementState, SwapQueue

from conftest import LISTENER, SENDER, tx_hash


class FakeResolver:
    def __init__(self, price: Decimal = Decimal("2.0")):
        self.price = price
        self.calls: list[Optional[int]] = []

    async def resolve(self, block_number: Optional[int] = None) -> Decimal:
        self.calls.append(block_number)
        return self.price


class FakeExecutor:
    """Executor that signs deterministic payouts and confirms them instantly."""

    def __init__(self):
        self.signed: list[SignedPayout] = []
        self.submitted: list[str] = []
        self.broadcasts: list[tuple[str, str]] = []
        self.receipts: dict[str, Optional[bool]] = {}
        self.confirm_error: Optional[Exception] = None
        self.broadcast_error: Optional[Exception] = None
        self.active = 0
        self.max_active = 0

    async def sign_transfer(self, recipient: str, amount: int) -> SignedPayout:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        n = len(self.signed) + 1
        signed = SignedPayout(
            tx_hash=tx_hash(1000 + n),
            raw_transaction=f"0x{n:04x}",
            nonce=n,
            recipient=Web3.to_checksum_address(recipient),
            amount=amount,
        )
        self.signed.append(signed)
        return signed

    async def submit(self, signed: SignedPayout) -> str:
        self.submitted.append(signed.tx_hash)
        return signed.tx_hash

    async def broadcast(self, raw_transaction: str, tx_hash: str) -> str:
        self.broadcasts.append((raw_transaction, tx_hash))
        if self.broadcast_error is not None:
            raise self.broadcast_error
        return tx_hash

    async def receipt_status(self, tx_hash: str) -> Optional[bool]:
        return self.receipts.get(tx_hash)

    async def wait_for_confirmation(self, tx_hash: str) -> str:
        try:
            await asyncio.sleep(0.001)
            if self.confirm_error is not None:
                raise self.confirm_error
            return tx_hash
        finally:
            self.active = max(0, self.active - 1)


class GatedExecutor(FakeExecutor):
    """Holds the first payout in confirmation until released."""

    def __init__(self):
        super().__init__()
        self.confirming = asyncio.Event()
        self.release = asyncio.Event()

    async def wait_for_confirmation(self, tx_hash: str) -> str:
        if len(self.signed) == 1:
            self.confirming.set()
            await self.release.wait()
        return await super().wait_for_confirmation(tx_hash)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def queue(store: LedgerStore, resolver, executor):
    return SwapQueue(store, resolver, executor, LISTENER)


class TestProcess:
    """Tests for settling a single event."""

    @pytest.mark.asyncio
    async def test_live_event_is_settled(self, queue, store, resolver, executor, make_log):
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1), value=1_000_000, block=120_000_001))

        outcome = await queue.process(event)

        assert outcome.status == OutcomeStatus.RECORDED
        assert outcome.succeeded
        assert outcome.settlement.payout == 495_000_000_000_000_000
        assert resolver.calls == [None]
        assert executor.signed[0].amount == 495_000_000_000_000_000
        assert executor.signed[0].recipient == Web3.to_checksum_address(SENDER)

        intent = await store.get_intent(tx_hash(1))
        assert intent.status == IntentStatus.SETTLED
        assert await store.exists_by_incoming_hash(tx_hash(1))
        assert await store.latest_persisted_block() == 120_000_001
        assert await store.all_failed_attempts() == []
        assert queue.state == SettlementState.IDLE
        assert queue.current is None

    @pytest.mark.asyncio
    async def test_backfilled_event_uses_historical_price(self, queue, resolver, make_log):
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1), block=120_000_050), block_number=120_000_050)

        await queue.process(event)

        assert resolver.calls == [120_000_050]

    @pytest.mark.asyncio
    async def test_already_recorded_is_skipped(self, queue, store, executor, make_log):
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1)))
        await queue.process(event)

        outcome = await queue.process(event)

        assert outcome.status == OutcomeStatus.SKIPPED
        assert len(executor.signed) == 1

    @pytest.mark.asyncio
    async def test_zero_price_is_recorded_as_failed_attempt(
        self, queue, store, resolver, executor, make_log
    ):
        resolver.price = Decimal(0)
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1), block=120_000_007))

        outcome = await queue.process(event)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == ErrorKind.PRICE_RESOLUTION
        assert executor.signed == []

        attempts = await store.all_failed_attempts()
        assert len(attempts) == 1
        assert attempts[0].error_kind == "price_resolution"
        # Replays are pinned to the transfer's block
        assert json.loads(attempts[0].serialized_event)["blockNumber"] == 120_000_007

    @pytest.mark.asyncio
    async def test_execution_failure_keeps_signed_intent(self, queue, store, executor, make_log):
        executor.confirm_error = ExecutionError("not confirmed within 180s")
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1)))

        outcome = await queue.process(event)

        assert outcome.error_kind == ErrorKind.EXECUTION
        attempts = await store.all_failed_attempts()
        assert [a.error_message for a in attempts] == ["not confirmed within 180s"]
        intent = await store.get_intent(tx_hash(1))
        assert intent.status == IntentStatus.SIGNED
        assert not await store.exists_by_incoming_hash(tx_hash(1))

    @pytest.mark.asyncio
    async def test_transfer_to_other_address_is_dropped(self, queue, store, make_log):
        other = "0x9999999999999999999999999999999999999999"
        event = TransferEvent(log=make_log(recipient=other))

        outcome = await queue.process(event)

        assert outcome.error_kind == ErrorKind.DECODE
        assert await store.all_failed_attempts() == []

    @pytest.mark.asyncio
    async def test_recording_failure_is_not_retried(self, queue, store, executor, make_log):
        store.insert_swap_record = AsyncMock(side_effect=PersistenceError("disk full"))
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1)))

        outcome = await queue.process(event)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error_kind == ErrorKind.PERSISTENCE
        assert outcome.outgoing_transaction_hash == executor.signed[0].tx_hash
        assert await store.all_failed_attempts() == []

    @pytest.mark.asyncio
    async def test_failed_attempt_write_failure_is_swallowed(self, queue, store, resolver, make_log):
        resolver.price = Decimal(0)
        store.insert_failed_attempt = AsyncMock(side_effect=PersistenceError("locked"))

        outcome = await queue.process(TransferEvent(log=make_log()))

        assert outcome.error_kind == ErrorKind.PRICE_RESOLUTION
        store.insert_failed_attempt.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_execution_failure(self, queue, store, executor, make_log):
        executor.confirm_error = RuntimeError("boom")

        outcome = await queue.process(TransferEvent(log=make_log()))

        assert outcome.error_kind == ErrorKind.EXECUTION
        assert len(await store.all_failed_attempts()) == 1

    @pytest.mark.asyncio
    async def test_outcome_callback(self, store, resolver, executor, make_log):
        outcomes = []
        queue = SwapQueue(store, resolver, executor, LISTENER, on_outcome=outcomes.append)

        await queue.process(TransferEvent(log=make_log()))

        assert [o.status for o in outcomes] == [OutcomeStatus.RECORDED]
        assert queue.processed == 1


class TestResume:
    """Tests for resuming a payout signed by an earlier attempt."""

    async def _leave_signed_intent(self, queue, executor, make_log) -> TransferEvent:
        executor.confirm_error = ExecutionError("timeout")
        event = TransferEvent(log=make_log(tx_hash=tx_hash(1), block=120_000_001))
        await queue.process(event)
        executor.confirm_error = None
        return TransferEvent(log=event.log, block_number=120_000_001)

    @pytest.mark.asyncio
    async def test_pending_payout_is_rebroadcast_not_resigned(
        self, queue, store, resolver, executor, make_log
    ):
        replay = await self._leave_signed_intent(queue, executor, make_log)
        first = executor.signed[0]
        resolver.price = Decimal("4.0")

        outcome = await queue.process(replay)

        assert outcome.status == OutcomeStatus.RECORDED
        assert len(executor.signed) == 1
        assert executor.broadcasts == [(first.raw_transaction, first.tx_hash)]
        # Recorded with the amounts that were actually signed
        record_hash = outcome.outgoing_transaction_hash
        assert record_hash == first.tx_hash
        assert resolver.calls == [None]
        intent = await store.get_intent(tx_hash(1))
        assert intent.status == IntentStatus.SETTLED

    @pytest.mark.asyncio
    async def test_mined_payout_is_recorded_without_broadcast(
        self, queue, store, executor, make_log
    ):
        replay = await self._leave_signed_intent(queue, executor, make_log)
        executor.receipts[executor.signed[0].tx_hash] = True

        outcome = await queue.process(replay)

        assert outcome.status == OutcomeStatus.RECORDED
        assert executor.broadcasts == []
        assert len(executor.signed) == 1
        assert await store.exists_by_incoming_hash(tx_hash(1))

    @pytest.mark.asyncio
    async def test_reverted_payout_is_signed_again(self, queue, store, resolver, executor, make_log):
        replay = await self._leave_signed_intent(queue, executor, make_log)
        executor.receipts[executor.signed[0].tx_hash] = False

        outcome = await queue.process(replay)

        assert outcome.status == OutcomeStatus.RECORDED
        assert len(executor.signed) == 2
        assert outcome.outgoing_transaction_hash == executor.signed[1].tx_hash
        assert resolver.calls == [None, 120_000_001]

    @pytest.mark.asyncio
    async def test_dropped_payout_is_signed_again(self, queue, executor, make_log):
        replay = await self._leave_signed_intent(queue, executor, make_log)
        executor.broadcast_error = StaleNonceError("nonce used")

        outcome = await queue.process(replay)

        assert outcome.status == OutcomeStatus.RECORDED
        assert len(executor.signed) == 2

    @pytest.mark.asyncio
    async def test_unsettled_intent_survives_failed_resume(self, queue, store, executor, make_log):
        replay = await self._leave_signed_intent(queue, executor, make_log)
        executor.broadcast_error = ExecutionError("node unavailable")

        outcome = await queue.process(replay)

        assert outcome.error_kind == ErrorKind.EXECUTION
        assert len(executor.signed) == 1
        assert len(await store.get_unsettled_intents()) == 1


class TestQueueLoop:
    """Tests for the single-consumer loop."""

    @pytest.mark.asyncio
    async def test_fifo_one_at_a_time(self, queue, store, executor, make_log):
        events = [
            TransferEvent(log=make_log(tx_hash=tx_hash(n), value=n * 1_000_000, block=100 + n))
            for n in (1, 2, 3, 4)
        ]
        queue.enqueue_many(events)
        assert queue.pending == 4

        queue.start()
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()

        assert [s.amount for s in executor.signed] == [
            n * 990_000 * 10**18 // 2_000_000 for n in (1, 2, 3, 4)
        ]
        assert executor.max_active == 1
        assert queue.processed == 4
        assert await store.latest_persisted_block() == 104

    @pytest.mark.asyncio
    async def test_arrivals_during_confirmation_wait_their_turn(self, store, resolver, make_log):
        executor = GatedExecutor()
        queue = SwapQueue(store, resolver, executor, LISTENER)
        events = [
            TransferEvent(log=make_log(tx_hash=tx_hash(n), value=n * 1_000_000, block=100 + n))
            for n in (1, 2, 3)
        ]

        queue.enqueue(events[0])
        queue.start()
        await asyncio.wait_for(executor.confirming.wait(), timeout=5)

        queue.enqueue(events[2])
        queue.enqueue(events[1])
        assert queue.state == SettlementState.CONFIRMING
        assert queue.current.transaction_hash == tx_hash(1)
        assert queue.pending == 2
        assert len(executor.signed) == 1

        executor.release.set()
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()

        assert [s.amount for s in executor.signed] == [
            n * 990_000 * 10**18 // 2_000_000 for n in (1, 3, 2)
        ]
        assert executor.max_active == 1
        assert queue.processed == 3

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_worker(self, queue, store, executor, make_log):
        other = "0x9999999999999999999999999999999999999999"
        queue.enqueue(TransferEvent(log=make_log(tx_hash=tx_hash(1), recipient=other)))
        queue.enqueue(TransferEvent(log=make_log(tx_hash=tx_hash(2))))

        queue.start()
        await asyncio.wait_for(queue.join(), timeout=5)
        await queue.stop()

        assert await store.exists_by_incoming_hash(tx_hash(2))
        assert not await store.exists_by_incoming_hash(tx_hash(1))

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, queue):
        first = queue.start()
        second = queue.start()

        assert first is second
        assert queue.running
        await queue.stop()
        assert not queue.running
