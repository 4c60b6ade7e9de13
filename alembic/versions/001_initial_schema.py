"""Initial schema: swap records, failed attempts and payout intents.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from swapback.ledger.models import Uint256


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Swap records table
    op.create_table(
        'swap_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sender', sa.String(42), nullable=False),
        sa.Column('usdc_received', Uint256(), nullable=False),
        sa.Column('arb_amount', Uint256(), nullable=False),
        sa.Column('arb_price', sa.Numeric(36, 18), nullable=False),
        sa.Column('fee', Uint256(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('incoming_transaction_hash', sa.String(66), nullable=False),
        sa.Column('outgoing_transaction_hash', sa.String(66), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('incoming_transaction_hash')
    )
    op.create_index('ix_swap_records_sender', 'swap_records', ['sender'])
    op.create_index('ix_swap_records_block_number', 'swap_records', ['block_number'])
    op.create_index('ix_swap_records_incoming_transaction_hash', 'swap_records', ['incoming_transaction_hash'])
    op.create_index('ix_swap_records_outgoing_transaction_hash', 'swap_records', ['outgoing_transaction_hash'])

    # Failed attempts table
    op.create_table(
        'failed_attempts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('serialized_event', sa.Text(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('error_kind', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Payout intents table
    op.create_table(
        'payout_intents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('incoming_transaction_hash', sa.String(66), nullable=False),
        sa.Column('recipient', sa.String(42), nullable=False),
        sa.Column('amount', Uint256(), nullable=False),
        sa.Column('usdc_received', Uint256(), nullable=False),
        sa.Column('fee', Uint256(), nullable=False),
        sa.Column('arb_price', sa.Numeric(36, 18), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('serialized_event', sa.Text(), nullable=False),
        sa.Column('outgoing_transaction_hash', sa.String(66), nullable=False),
        sa.Column('raw_transaction', sa.Text(), nullable=False),
        sa.Column('nonce', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('incoming_transaction_hash')
    )
    op.create_index('ix_payout_intents_incoming_transaction_hash', 'payout_intents', ['incoming_transaction_hash'])


def downgrade() -> None:
    op.drop_index('ix_payout_intents_incoming_transaction_hash', table_name='payout_intents')
    op.drop_table('payout_intents')
    op.drop_table('failed_attempts')
    op.drop_index('ix_swap_records_outgoing_transaction_hash', table_name='swap_records')
    op.drop_index('ix_swap_records_incoming_transaction_hash', table_name='swap_records')
    op.drop_index('ix_swap_records_block_number', table_name='swap_records')
    op.drop_index('ix_swap_records_sender', table_name='swap_records')
    op.drop_table('swap_records')
