"""Swap ledger query endpoints.

Amounts are returned as strings of base units (USDC: 6 decimals, ARB: 18
decimals) so no precision is lost in JSON.
"""

import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from swapback.ledger.database import get_db
from swapback.ledger.models import SwapRecord
from swapback.ledger.repository import LedgerRepository

router = APIRouter()

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


class SwapRecordResponse(BaseModel):
    """One settled swap."""

    id: int
    sender: str
    usdc_received: str
    fee: str
    arb_amount: str
    arb_price: str
    block_number: int
    incoming_transaction_hash: str
    outgoing_transaction_hash: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: SwapRecord) -> "SwapRecordResponse":
        return cls(
            id=record.id,
            sender=record.sender,
            usdc_received=str(record.usdc_received),
            fee=str(record.fee),
            arb_amount=str(record.arb_amount),
            arb_price=str(record.arb_price),
            block_number=record.block_number,
            incoming_transaction_hash=record.incoming_transaction_hash,
            outgoing_transaction_hash=record.outgoing_transaction_hash,
            created_at=record.created_at,
        )


class SwapStatsResponse(BaseModel):
    """Aggregate figures over the ledger."""

    swap_count: int
    total_fee: str
    average_arb_price: Optional[str] = None


def _check_address(address: str) -> str:
    if not ADDRESS_RE.match(address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid address: {address}",
        )
    return address


def _check_tx_hash(tx_hash: str) -> str:
    if not TX_HASH_RE.match(tx_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid transaction hash: {tx_hash}",
        )
    return tx_hash


@router.get("/swaps", response_model=list[SwapRecordResponse])
async def list_swaps(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """List settled swaps, newest first."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        records = await repo.list_swap_records(limit=limit, offset=offset)
        return [SwapRecordResponse.from_record(r) for r in records]


@router.get("/swaps/top", response_model=list[SwapRecordResponse])
async def top_swaps(
    limit: int = Query(default=5, ge=1, le=100),
    sender: Optional[str] = None,
):
    """Largest swaps by USDC received, optionally for one sender."""
    if sender is not None:
        _check_address(sender)
    async with get_db() as session:
        repo = LedgerRepository(session)
        records = await repo.top_swaps(limit=limit, sender=sender)
        return [SwapRecordResponse.from_record(r) for r in records]


@router.get("/swaps/above", response_model=list[SwapRecordResponse])
async def swaps_above(
    usdc: int = Query(..., ge=0, description="Minimum USDC received, in base units"),
    limit: int = Query(default=50, ge=1, le=500),
):
    """Swaps that received at least the given amount."""
    async with get_db() as session:
        repo = LedgerRepository(session)
        records = await repo.swaps_above_threshold(usdc, limit=limit)
        return [SwapRecordResponse.from_record(r) for r in records]


@router.get("/swaps/stats", response_model=SwapStatsResponse)
async def swap_stats(sender: Optional[str] = None):
    """Swap count, fee total and average price."""
    if sender is not None:
        _check_address(sender)
    async with get_db() as session:
        repo = LedgerRepository(session)
        count = await repo.count_swaps(sender=sender)
        total_fee = await repo.total_fee_collected(sender=sender)
        average = await repo.average_arb_price()
        return SwapStatsResponse(
            swap_count=count,
            total_fee=str(total_fee),
            average_arb_price=str(average) if average is not None else None,
        )


@router.get("/swaps/incoming/{tx_hash}", response_model=SwapRecordResponse)
async def get_by_incoming(tx_hash: str):
    """Look up a swap by the USDC transfer hash."""
    _check_tx_hash(tx_hash)
    async with get_db() as session:
        repo = LedgerRepository(session)
        record = await repo.get_by_incoming_hash(tx_hash)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Swap not found")
        return SwapRecordResponse.from_record(record)


@router.get("/swaps/outgoing/{tx_hash}", response_model=SwapRecordResponse)
async def get_by_outgoing(tx_hash: str):
    """Look up a swap by the ARB payout hash."""
    _check_tx_hash(tx_hash)
    async with get_db() as session:
        repo = LedgerRepository(session)
        record = await repo.get_by_outgoing_hash(tx_hash)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Swap not found")
        return SwapRecordResponse.from_record(record)


@router.get("/swaps/sender/{address}", response_model=list[SwapRecordResponse])
async def list_by_sender(
    address: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    """Swaps sent by one address."""
    _check_address(address)
    async with get_db() as session:
        repo = LedgerRepository(session)
        records = await repo.list_by_sender(address, limit=limit, offset=offset)
        return [SwapRecordResponse.from_record(r) for r in records]
