"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"
os.environ["PAYOUT_PRIVATE_KEY"] = ""
os.environ["WALLET_SEED_PHRASE"] = ""

from swapback.chain.events import TRANSFER_TOPIC, address_topic
from swapback.ledger.models import Base
from swapback.ledger.repository import LedgerRepository
from swapback.ledger.store import LedgerStore

USDC_ADDRESS = "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"
LISTENER = "0x123c058C58102a4eE0E24a3c7F0Cee2590e1c0f4"
SENDER = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest_asyncio.fixture
async def store(session_factory) -> LedgerStore:
    """Ledger store with one transaction per call, on the test database."""
    return LedgerStore(session_factory)


@pytest.fixture
def make_log() -> Callable[..., dict]:
    """Factory for raw Transfer logs as returned by eth_getLogs."""

    def _make_log(
        tx_hash: str = "0x" + "ab" * 32,
        value: int = 1_000_000,
        block: int = 120_000_000,
        log_index: int = 0,
        sender: str = SENDER,
        recipient: Optional[str] = LISTENER,
    ) -> dict:
        return {
            "address": USDC_ADDRESS.lower(),
            "topics": [
                TRANSFER_TOPIC,
                address_topic(sender),
                address_topic(recipient),
            ],
            "data": "0x" + hex(value)[2:].zfill(64),
            "blockNumber": hex(block),
            "transactionHash": tx_hash,
            "logIndex": hex(log_index),
            "removed": False,
        }

    return _make_log


def tx_hash(n: int) -> str:
    """Deterministic 32-byte transaction hash for test number n."""
    return "0x" + format(n, "064x")
