"""Tests for the FastAPI endpoints."""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from swapback.api.app import create_app
from swapback.chain.events import TransferEvent
from swapback.chain.watcher import ChainWatcher
from swapback.ledger.database import close_db, get_engine
from swapback.ledger.models import Base
from swapback.ledger.store import LedgerStore
from swapback.settlement.queue import SwapQueue

from conftest import LISTENER, SENDER, USDC_ADDRESS, tx_hash


@pytest.fixture
async def test_app():
    """Create test application with fresh database."""
    # Create tables in memory database
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app = create_app()

    yield app

    # Cleanup
    await close_db()


@pytest.fixture
async def client(test_app):
    """Create async test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def swaps(test_app):
    """Two settled swaps written through the default store."""
    store = LedgerStore()
    for n, received in ((1, 1_000_000), (2, 5_000_000)):
        await store.insert_swap_record(
            sender=SENDER,
            usdc_received=received,
            arb_amount=received * 99 // 100 * 10**18 // 2_000_000,
            arb_price=Decimal("2.0"),
            fee=received - received * 99 // 100,
            block_number=120_000_000 + n,
            incoming_transaction_hash=tx_hash(n),
            outgoing_transaction_hash=tx_hash(100 + n),
        )


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "swapback"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        """Test detailed health check."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "config" in data
        assert "environment" in data["config"]
        assert data["config"]["wallet_configured"] is False
        assert data["ledger"] == {"latest_block": 0, "failed_attempts": 0, "unsettled_intents": 0}
        assert data["pipeline"] is None

    @pytest.mark.asyncio
    async def test_detailed_health_reports_pipeline(self, test_app, make_log):
        """Queue and watcher state are reported when the service is running."""
        queue = SwapQueue(LedgerStore(), resolver=None, executor=None, listener_address=LISTENER)
        queue.enqueue(TransferEvent(log=make_log(tx_hash=tx_hash(1))))
        watcher = ChainWatcher(None, queue, token_address=USDC_ADDRESS, listener_address=LISTENER)
        watcher.start_from(120_000_001)
        app = create_app(queue=queue, watcher=watcher)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.get("/health/detailed")

        assert response.status_code == 200
        pipeline = response.json()["pipeline"]
        assert pipeline["queue"] == {
            "running": False,
            "state": "idle",
            "pending": 1,
            "processed": 0,
            "current": None,
        }
        assert pipeline["watcher"] == {"next_block": 120_000_001, "behind_head": False}


class TestSwapEndpoints:
    """Tests for the swap ledger endpoints."""

    @pytest.mark.asyncio
    async def test_list_swaps_newest_first(self, client, swaps):
        response = await client.get("/api/v1/swaps")

        assert response.status_code == 200
        data = response.json()
        assert [s["incoming_transaction_hash"] for s in data] == [tx_hash(2), tx_hash(1)]
        assert data[1]["arb_amount"] == "495000000000000000"
        assert data[1]["fee"] == "10000"

    @pytest.mark.asyncio
    async def test_get_by_incoming_hash(self, client, swaps):
        response = await client.get(f"/api/v1/swaps/incoming/{tx_hash(1)}")

        assert response.status_code == 200
        assert response.json()["outgoing_transaction_hash"] == tx_hash(101)

    @pytest.mark.asyncio
    async def test_get_by_outgoing_hash(self, client, swaps):
        response = await client.get(f"/api/v1/swaps/outgoing/{tx_hash(102)}")

        assert response.status_code == 200
        assert response.json()["incoming_transaction_hash"] == tx_hash(2)

    @pytest.mark.asyncio
    async def test_unknown_hash(self, client, swaps):
        response = await client.get(f"/api/v1/swaps/incoming/{tx_hash(77)}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_hash(self, client):
        response = await client.get("/api/v1/swaps/incoming/0x1234")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_by_sender(self, client, swaps):
        response = await client.get(f"/api/v1/swaps/sender/{SENDER}")

        assert response.status_code == 200
        assert len(response.json()) == 2

    @pytest.mark.asyncio
    async def test_invalid_sender(self, client):
        response = await client.get("/api/v1/swaps/sender/not-an-address")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_top(self, client, swaps):
        response = await client.get("/api/v1/swaps/top", params={"limit": 1})

        assert response.status_code == 200
        assert [s["usdc_received"] for s in response.json()] == ["5000000"]

    @pytest.mark.asyncio
    async def test_above_threshold(self, client, swaps):
        response = await client.get("/api/v1/swaps/above", params={"usdc": 2_000_000})

        assert response.status_code == 200
        assert [s["incoming_transaction_hash"] for s in response.json()] == [tx_hash(2)]

    @pytest.mark.asyncio
    async def test_stats(self, client, swaps):
        response = await client.get("/api/v1/swaps/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["swap_count"] == 2
        assert data["total_fee"] == "60000"
        assert Decimal(data["average_arb_price"]) == Decimal("2")

    @pytest.mark.asyncio
    async def test_stats_empty_ledger(self, client):
        response = await client.get("/api/v1/swaps/stats")

        assert response.status_code == 200
        assert response.json() == {"swap_count": 0, "total_fee": "0", "average_arb_price": None}
