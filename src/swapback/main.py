"""Main entry point - runs the settlement pipeline and the API."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from swapback.api.app import create_app
from swapback.chain.executor import SwapExecutor
from swapback.chain.rpc import JsonRpcClient
from swapback.chain.wallet import load_payout_account
from swapback.chain.watcher import ChainWatcher
from swapback.config import get_settings
from swapback.ledger.database import close_db, init_db
from swapback.ledger.store import LedgerStore
from swapback.pricing.resolver import PriceResolver
from swapback.recovery.reclaimer import RetryReclaimer
from swapback.recovery.scanner import RecoveryScanner
from swapback.settlement.queue import SwapQueue

logger = logging.getLogger(__name__)


class Application:
    """Wires the watcher, recovery, reclaimer and swap queue together."""

    def __init__(self):
        self.settings = get_settings()
        self.source_rpc: Optional[JsonRpcClient] = None
        self.target_rpc: Optional[JsonRpcClient] = None
        self.resolver: Optional[PriceResolver] = None
        self.queue: Optional[SwapQueue] = None
        self.watcher: Optional[ChainWatcher] = None
        self.reclaimer: Optional[RetryReclaimer] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        """Start all services."""
        # Configure logging
        log_level = logging.DEBUG if self.settings.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logger.info("Starting Swapback...")
        logger.info(f"Environment: {self.settings.environment}")

        # Initialize database
        await init_db()
        logger.info("Database initialized")

        self._build()
        tasks = [self.queue.start()]

        # Recover missed transfers before going live
        scanner = RecoveryScanner(
            self.source_rpc,
            self.queue.store,
            token_address=self.settings.source_token_address,
            listener_address=self.settings.listener_address,
            genesis_block=self.settings.genesis_block,
            max_block_range=self.settings.max_block_range,
            concurrency=self.settings.recovery_concurrency,
        )
        result = await scanner.run(self.queue)
        if result.head is not None:
            self.watcher.start_from(result.head + 1)
        elif result.from_block is not None:
            # Recovery never reached the chain: the watcher backfills the gap
            logger.warning(f"Recovery scan gave up, watcher backfilling from block {result.from_block}")
            self.watcher.start_from(result.from_block, backfill=True)

        tasks.append(asyncio.create_task(self.watcher.run()))
        tasks.append(asyncio.create_task(self.reclaimer.run()))
        logger.info("Watcher and reclaimer tasks created")

        if self.settings.api_enabled:
            tasks.append(asyncio.create_task(self._run_api()))
            logger.info("API task created")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        self.watcher.stop()
        self.reclaimer.stop()

        # Cancel all tasks
        for task in tasks:
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*tasks, return_exceptions=True)

        # Cleanup
        await self._cleanup()

    def _build(self):
        settings = self.settings
        account = load_payout_account(settings)

        self.source_rpc = JsonRpcClient(settings.source_rpc_url, timeout=settings.rpc_timeout_seconds)
        self.target_rpc = JsonRpcClient(settings.target_rpc_url, timeout=settings.rpc_timeout_seconds)
        self.resolver = PriceResolver(
            self.source_rpc,
            api_url=settings.coingecko_api_url,
            coin_id=settings.coingecko_coin_id,
            api_key=settings.coingecko_api_key,
            timeout=settings.price_timeout_seconds,
        )
        executor = SwapExecutor(
            self.target_rpc,
            account,
            token_address=settings.payout_token_address,
            chain_id=settings.target_chain_id,
            confirmation_timeout=settings.confirmation_timeout_seconds,
            poll_interval=settings.confirmation_poll_seconds,
        )
        store = LedgerStore()

        self.queue = SwapQueue(store, self.resolver, executor, settings.listener_address)
        self.watcher = ChainWatcher(
            self.source_rpc,
            self.queue,
            token_address=settings.source_token_address,
            listener_address=settings.listener_address,
            poll_interval=settings.watcher_poll_seconds,
            max_block_range=settings.max_block_range,
        )
        self.reclaimer = RetryReclaimer(store, self.queue, interval=settings.reclaim_interval_seconds)

    async def _run_api(self):
        """Run the FastAPI server."""
        try:
            app = create_app(standalone=False, queue=self.queue, watcher=self.watcher)
            config = uvicorn.Config(
                app,
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Starting API server on {self.settings.api_host}:{self.settings.api_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    async def _cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up...")

        if self.queue is not None:
            await self.queue.stop()
        if self.resolver is not None:
            await self.resolver.close()
        for rpc in (self.source_rpc, self.target_rpc):
            if rpc is not None:
                await rpc.close()

        await close_db()
        logger.info("Cleanup complete")

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def main():
    """Main entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    app = Application()

    # Setup signal handlers
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
