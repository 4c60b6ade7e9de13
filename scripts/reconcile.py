#!/usr/bin/env python3
"""Ledger Reconciliation Script.

Scans the source chain for USDC transfers to the listener and reports the
ones that have no swap record, plus failed attempts waiting for a retry and
payouts that were signed but never recorded. Read-only: nothing is queued or
paid.

Usage:
    python scripts/reconcile.py [--from-block N] [--json]

Options:
    --from-block  Scan from this block instead of the last recorded one
    --json        Print the unsettled transfers as JSON
"""

import argparse
import asyncio
import json
import logging

from dotenv import load_dotenv

from swapback.chain.events import decode_transfer
from swapback.chain.rpc import JsonRpcClient
from swapback.config import get_settings
from swapback.ledger.database import close_db, init_db
from swapback.ledger.store import LedgerStore
from swapback.recovery.scanner import RecoveryScanner
from swapback.settlement.calculator import USDC_DECIMALS, format_units

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Swap Ledger Reconciliation")
    parser.add_argument("--from-block", type=int, help="First block to scan")
    parser.add_argument("--json", action="store_true", help="Output unsettled transfers as JSON")

    args = parser.parse_args()
    settings = get_settings()

    # Initialize database
    await init_db()
    store = LedgerStore()

    async with JsonRpcClient(settings.source_rpc_url, timeout=settings.rpc_timeout_seconds) as rpc:
        scanner = RecoveryScanner(
            rpc,
            store,
            token_address=settings.source_token_address,
            listener_address=settings.listener_address,
            genesis_block=settings.genesis_block,
            max_block_range=settings.max_block_range,
            concurrency=settings.recovery_concurrency,
        )
        result = await scanner.scan(from_block=args.from_block)

    failed = await store.all_failed_attempts()
    intents = await store.get_unsettled_intents()
    await close_db()

    unsettled = []
    for event in result.events:
        transfer = decode_transfer(event.log, recipient=settings.listener_address)
        unsettled.append(
            {
                "transaction_hash": transfer.transaction_hash,
                "sender": transfer.sender,
                "block_number": transfer.block_number,
                "usdc": format_units(transfer.value, USDC_DECIMALS),
            }
        )

    if args.json:
        print(json.dumps(unsettled, indent=2))
        return unsettled

    logger.info("=" * 60)
    logger.info("LEDGER RECONCILIATION")
    logger.info("=" * 60)
    logger.info(f"Blocks scanned:     {result.from_block} - {result.head}")
    logger.info(f"Unsettled:          {len(unsettled)}")
    logger.info(f"Failed attempts:    {len(failed)}")
    logger.info(f"Unrecorded payouts: {len(intents)}")

    for item in unsettled:
        logger.info(
            f"  {item['transaction_hash']} block {item['block_number']}: "
            f"{item['usdc']} USDC from {item['sender']}"
        )
    for intent in intents:
        logger.info(
            f"  payout {intent.outgoing_transaction_hash} for {intent.incoming_transaction_hash} "
            f"(nonce {intent.nonce}) not recorded"
        )

    return unsettled


if __name__ == "__main__":
    asyncio.run(main())
