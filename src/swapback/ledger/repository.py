"""Repository for ledger operations."""

from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swapback.errors import DuplicateSwapError
from swapback.ledger.models import (
    FailedAttempt,
    IntentStatus,
    PayoutIntent,
    SwapRecord,
)


def normalize_hash(value: str) -> str:
    """Lowercase a 0x-prefixed hex hash so lookups are case-insensitive."""
    value = value.strip().lower()
    if not value.startswith("0x"):
        value = f"0x{value}"
    return value


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Swap record operations
    async def insert_swap_record(
        self,
        sender: str,
        usdc_received: int,
        arb_amount: int,
        arb_price: Decimal,
        fee: int,
        block_number: int,
        incoming_transaction_hash: str,
        outgoing_transaction_hash: str,
    ) -> SwapRecord:
        """Insert a completed settlement. Raises DuplicateSwapError if the
        incoming hash was already recorded."""
        incoming = normalize_hash(incoming_transaction_hash)
        if await self.exists_by_incoming_hash(incoming):
            raise DuplicateSwapError(f"Swap already recorded for {incoming}")

        record = SwapRecord(
            sender=sender,
            usdc_received=usdc_received,
            arb_amount=arb_amount,
            arb_price=arb_price,
            fee=fee,
            block_number=block_number,
            incoming_transaction_hash=incoming,
            outgoing_transaction_hash=normalize_hash(outgoing_transaction_hash),
        )
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateSwapError(f"Swap already recorded for {incoming}") from e
        return record

    async def exists_by_incoming_hash(self, tx_hash: str) -> bool:
        """Check if a swap was recorded for an incoming transaction."""
        stmt = select(SwapRecord.id).where(
            SwapRecord.incoming_transaction_hash == normalize_hash(tx_hash)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def latest_persisted_block(self) -> int:
        """Highest source block with a recorded swap (0 if none)."""
        stmt = select(func.max(SwapRecord.block_number))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    # Failed attempt operations
    async def insert_failed_attempt(
        self,
        serialized_event: str,
        error_message: str,
        error_kind: Optional[str] = None,
    ) -> FailedAttempt:
        """Record an event that could not be settled."""
        attempt = FailedAttempt(
            serialized_event=serialized_event,
            error_message=error_message,
            error_kind=error_kind,
        )
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def all_failed_attempts(self) -> list[FailedAttempt]:
        """Get all failed attempts in insertion order."""
        stmt = select(FailedAttempt).order_by(FailedAttempt.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_failed_attempts(self, ids: Iterable[int]) -> int:
        """Delete the given failed attempts. Returns number of rows removed."""
        ids = list(ids)
        if not ids:
            return 0
        stmt = delete(FailedAttempt).where(FailedAttempt.id.in_(ids))
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def delete_all_failed_attempts(self) -> int:
        """Delete every failed attempt."""
        result = await self.session.execute(delete(FailedAttempt))
        return result.rowcount or 0

    # Payout intent operations
    async def get_intent(self, incoming_transaction_hash: str) -> Optional[PayoutIntent]:
        """Get the payout intent for an incoming transaction."""
        stmt = select(PayoutIntent).where(
            PayoutIntent.incoming_transaction_hash
            == normalize_hash(incoming_transaction_hash)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record_intent(
        self,
        incoming_transaction_hash: str,
        recipient: str,
        amount: int,
        usdc_received: int,
        fee: int,
        arb_price: Decimal,
        block_number: int,
        serialized_event: str,
        outgoing_transaction_hash: str,
        raw_transaction: str,
        nonce: int,
    ) -> PayoutIntent:
        """Store a signed payout before it is broadcast.

        Replaces the signed transaction of an existing unsettled intent (a
        reverted payout being signed again).
        """
        intent = await self.get_intent(incoming_transaction_hash)
        if intent is None:
            intent = PayoutIntent(
                incoming_transaction_hash=normalize_hash(incoming_transaction_hash)
            )
            self.session.add(intent)
        elif intent.status == IntentStatus.SETTLED:
            raise DuplicateSwapError(
                f"Payout already settled for {intent.incoming_transaction_hash}"
            )

        intent.recipient = recipient
        intent.amount = amount
        intent.usdc_received = usdc_received
        intent.fee = fee
        intent.arb_price = arb_price
        intent.block_number = block_number
        intent.serialized_event = serialized_event
        intent.outgoing_transaction_hash = normalize_hash(outgoing_transaction_hash)
        intent.raw_transaction = raw_transaction
        intent.nonce = nonce
        intent.status = IntentStatus.SIGNED

        await self.session.flush()
        return intent

    async def mark_intent_settled(self, incoming_transaction_hash: str) -> Optional[PayoutIntent]:
        """Mark a payout intent as settled."""
        intent = await self.get_intent(incoming_transaction_hash)
        if intent is None:
            return None
        intent.status = IntentStatus.SETTLED
        await self.session.flush()
        return intent

    async def get_unsettled_intents(self) -> list[PayoutIntent]:
        """Get intents that were signed but never recorded as a swap."""
        stmt = (
            select(PayoutIntent)
            .where(PayoutIntent.status == IntentStatus.SIGNED)
            .order_by(PayoutIntent.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Read-only queries for the API
    async def list_swap_records(self, limit: int = 50, offset: int = 0) -> list[SwapRecord]:
        """Get swap records, newest first."""
        stmt = (
            select(SwapRecord)
            .order_by(SwapRecord.block_number.desc(), SwapRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_incoming_hash(self, tx_hash: str) -> Optional[SwapRecord]:
        """Get swap record by incoming transaction hash."""
        stmt = select(SwapRecord).where(
            SwapRecord.incoming_transaction_hash == normalize_hash(tx_hash)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_outgoing_hash(self, tx_hash: str) -> Optional[SwapRecord]:
        """Get the earliest swap record paid by an outgoing transaction."""
        stmt = (
            select(SwapRecord)
            .where(SwapRecord.outgoing_transaction_hash == normalize_hash(tx_hash))
            .order_by(SwapRecord.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_by_sender(
        self, sender: str, limit: int = 50, offset: int = 0
    ) -> list[SwapRecord]:
        """Get swap records for a sender address."""
        stmt = (
            select(SwapRecord)
            .where(func.lower(SwapRecord.sender) == sender.lower())
            .order_by(SwapRecord.block_number.desc(), SwapRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def top_swaps(self, limit: int = 5, sender: Optional[str] = None) -> list[SwapRecord]:
        """Get the largest swaps by USDC received."""
        stmt = select(SwapRecord)
        if sender:
            stmt = stmt.where(func.lower(SwapRecord.sender) == sender.lower())
        stmt = stmt.order_by(SwapRecord.usdc_received.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def swaps_above_threshold(self, usdc_received: int, limit: int = 50) -> list[SwapRecord]:
        """Get swaps that received at least the given USDC amount (base units)."""
        stmt = (
            select(SwapRecord)
            .where(SwapRecord.usdc_received >= usdc_received)
            .order_by(SwapRecord.usdc_received.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_swaps(self, sender: Optional[str] = None) -> int:
        """Count swap records, optionally for one sender."""
        stmt = select(func.count(SwapRecord.id))
        if sender:
            stmt = stmt.where(func.lower(SwapRecord.sender) == sender.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def total_fee_collected(self, sender: Optional[str] = None) -> int:
        """Sum of fees collected, in USDC base units."""
        # Summed in Python: amounts are exact integers that SQL SUM may not keep exact
        stmt = select(SwapRecord.fee)
        if sender:
            stmt = stmt.where(func.lower(SwapRecord.sender) == sender.lower())
        result = await self.session.execute(stmt)
        return sum(result.scalars().all())

    async def average_arb_price(self) -> Optional[Decimal]:
        """Average ARB price across all settlements."""
        result = await self.session.execute(select(SwapRecord.arb_price))
        prices = [Decimal(p) for p in result.scalars().all()]
        if not prices:
            return None
        return sum(prices) / len(prices)
