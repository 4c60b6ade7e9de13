"""Ledger store used by the settlement pipeline.

Each operation runs in its own transaction, so the swap queue, the recovery
scanner and the retry reclaimer can share one store without sharing a
session. Database errors surface as PersistenceError.
"""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncGenerator, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from swapback.errors import DuplicateSwapError, PersistenceError
from swapback.ledger.database import get_session_factory
from swapback.ledger.models import FailedAttempt, PayoutIntent, SwapRecord
from swapback.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


class LedgerStore:
    """Transaction-per-call facade over LedgerRepository."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[LedgerRepository, None]:
        factory = self._session_factory or get_session_factory()
        try:
            async with factory() as session:
                try:
                    yield LedgerRepository(session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except DuplicateSwapError:
            raise
        except SQLAlchemyError as e:
            raise PersistenceError(f"Ledger store error: {e}") from e

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
        """Record a settlement and close its payout intent in one transaction."""
        async with self._repository() as repo:
            record = await repo.insert_swap_record(
                sender=sender,
                usdc_received=usdc_received,
                arb_amount=arb_amount,
                arb_price=arb_price,
                fee=fee,
                block_number=block_number,
                incoming_transaction_hash=incoming_transaction_hash,
                outgoing_transaction_hash=outgoing_transaction_hash,
            )
            await repo.mark_intent_settled(incoming_transaction_hash)
            return record

    async def exists_by_incoming_hash(self, tx_hash: str) -> bool:
        async with self._repository() as repo:
            return await repo.exists_by_incoming_hash(tx_hash)

    async def latest_persisted_block(self) -> int:
        async with self._repository() as repo:
            return await repo.latest_persisted_block()

    async def insert_failed_attempt(
        self, serialized_event: str, message: str, kind: Optional[str] = None
    ) -> FailedAttempt:
        async with self._repository() as repo:
            return await repo.insert_failed_attempt(serialized_event, message, kind)

    async def all_failed_attempts(self) -> list[FailedAttempt]:
        async with self._repository() as repo:
            return await repo.all_failed_attempts()

    async def delete_failed_attempts(self, ids: Iterable[int]) -> int:
        async with self._repository() as repo:
            return await repo.delete_failed_attempts(ids)

    async def delete_all_failed_attempts(self) -> int:
        async with self._repository() as repo:
            return await repo.delete_all_failed_attempts()

    async def get_intent(self, incoming_transaction_hash: str) -> Optional[PayoutIntent]:
        async with self._repository() as repo:
            return await repo.get_intent(incoming_transaction_hash)

    async def record_intent(self, **fields) -> PayoutIntent:
        """Persist a signed payout. Must succeed before the payout is broadcast."""
        async with self._repository() as repo:
            return await repo.record_intent(**fields)

    async def get_unsettled_intents(self) -> list[PayoutIntent]:
        async with self._repository() as repo:
            return await repo.get_unsettled_intents()
