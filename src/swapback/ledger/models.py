"""SQLAlchemy models for the ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Numeric, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Uint256(TypeDecorator):
    """Exact storage for token amounts in base units.

    SQLite has no native decimal type and would round large values through
    float, so on SQLite amounts are stored as zero-padded text, which keeps
    ORDER BY numeric. Other backends use NUMERIC(78, 0).
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = int(value)
        if dialect.name == "sqlite":
            return str(value).zfill(78)
        return Decimal(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class IntentStatus(str, Enum):
    """Status of a payout intent."""

    SIGNED = "signed"      # Signed and about to be (or already) broadcast
    SETTLED = "settled"    # Confirmed and recorded as a swap


class SwapRecord(Base):
    """A completed settlement: USDC received, ARB paid back.

    The incoming transaction hash is the idempotency key.
    """

    __tablename__ = "swap_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sender: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    usdc_received: Mapped[int] = mapped_column(Uint256(), nullable=False)
    arb_amount: Mapped[int] = mapped_column(Uint256(), nullable=False)
    arb_price: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    fee: Mapped[int] = mapped_column(Uint256(), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    incoming_transaction_hash: Mapped[str] = mapped_column(
        String(66), unique=True, nullable=False, index=True
    )
    outgoing_transaction_hash: Mapped[str] = mapped_column(
        String(66), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class FailedAttempt(Base):
    """A transfer event that could not be settled.

    Rows are consumed (deleted) by the retry reclaimer.
    """

    __tablename__ = "failed_attempts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    serialized_event: Mapped[str] = mapped_column(Text, nullable=False)  # TransferEvent JSON
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_kind: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PayoutIntent(Base):
    """Durable record of a signed payout, written before broadcast.

    Keeps the signed transaction so an interrupted settlement can be resumed
    by rebroadcasting the same bytes instead of signing a second payout.
    """

    __tablename__ = "payout_intents"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    incoming_transaction_hash: Mapped[str] = mapped_column(
        String(66), unique=True, nullable=False, index=True
    )
    recipient: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(Uint256(), nullable=False)  # ARB payout
    usdc_received: Mapped[int] = mapped_column(Uint256(), nullable=False)
    fee: Mapped[int] = mapped_column(Uint256(), nullable=False)
    arb_price: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    serialized_event: Mapped[str] = mapped_column(Text, nullable=False)
    outgoing_transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    raw_transaction: Mapped[str] = mapped_column(Text, nullable=False)
    nonce: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[IntentStatus] = mapped_column(
        String(20), default=IntentStatus.SIGNED, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
