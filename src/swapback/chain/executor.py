"""Swap executor: signs, broadcasts and confirms ARB payouts.

Payouts are ERC-20 transfer() calls from the custodial wallet. Signing and
broadcasting are separate steps so the signed transaction can be stored as a
payout intent before it ever reaches the network.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from swapback.chain.rpc import JsonRpcClient
from swapback.errors import ExecutionError, RpcError, StaleNonceError

logger = logging.getLogger(__name__)

# transfer(address,uint256)
TRANSFER_SELECTOR = "0xa9059cbb"

# Headroom applied to eth_estimateGas
GAS_MULTIPLIER_NUM = 12
GAS_MULTIPLIER_DEN = 10

ALREADY_KNOWN_ERRORS = ("already known", "known transaction", "already imported")
NONCE_TOO_LOW_ERRORS = ("nonce too low", "nonce has already been used")


@dataclass(frozen=True)
class SignedPayout:
    """A signed, not necessarily broadcast, payout transaction."""

    tx_hash: str
    raw_transaction: str
    nonce: int
    recipient: str
    amount: int


def encode_transfer(recipient: str, amount: int) -> str:
    """ABI-encode transfer(recipient, amount) calldata."""
    if amount < 0 or amount >= 2**256:
        raise ValueError(f"Amount out of uint256 range: {amount}")
    return (
        TRANSFER_SELECTOR
        + recipient.lower().removeprefix("0x").zfill(64)
        + hex(amount)[2:].zfill(64)
    )


class SwapExecutor:
    """Pays out the target token from the custodial wallet.

    Failures are reported as ExecutionError and never retried here.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        account: LocalAccount,
        token_address: str,
        chain_id: int,
        confirmation_timeout: float = 180.0,
        poll_interval: float = 2.0,
    ):
        self.rpc = rpc
        self.account = account
        self.token_address = Web3.to_checksum_address(token_address)
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @property
    def address(self) -> str:
        return self.account.address

    async def sign_transfer(self, recipient: str, amount: int) -> SignedPayout:
        """Build and sign a token transfer without broadcasting it."""
        try:
            to_address = Web3.to_checksum_address(recipient)
            data = encode_transfer(to_address, amount)
        except ValueError as e:
            raise ExecutionError(f"Invalid payout: {e}") from e

        nonce = await self.rpc.get_transaction_count(self.account.address, "pending")
        gas_price = await self.rpc.gas_price()
        gas = await self.rpc.estimate_gas(
            {
                "from": self.account.address,
                "to": self.token_address,
                "data": data,
                "value": "0x0",
            }
        )

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas * GAS_MULTIPLIER_NUM // GAS_MULTIPLIER_DEN,
            "to": self.token_address,
            "value": 0,
            "data": data,
            "chainId": self.chain_id,
        }

        try:
            signed = self.account.sign_transaction(tx)
        except Exception as e:
            raise ExecutionError(f"Signing failed: {e}") from e

        return SignedPayout(
            tx_hash=Web3.to_hex(signed.hash),
            raw_transaction=Web3.to_hex(signed.raw_transaction),
            nonce=nonce,
            recipient=to_address,
            amount=amount,
        )

    async def submit(self, signed: SignedPayout) -> str:
        """Broadcast a signed payout. Rebroadcasting the same bytes is safe."""
        return await self.broadcast(signed.raw_transaction, signed.tx_hash)

    async def broadcast(self, raw_transaction: str, tx_hash: str) -> str:
        """Broadcast raw transaction bytes whose hash is already known."""
        try:
            returned = await self.rpc.send_raw_transaction(raw_transaction)
        except RpcError as e:
            message = str(e).lower()
            if any(marker in message for marker in ALREADY_KNOWN_ERRORS):
                logger.info(f"Payout {tx_hash} already in mempool")
                return tx_hash
            if any(marker in message for marker in NONCE_TOO_LOW_ERRORS):
                # Nonce consumed: fine only if it was consumed by this very tx
                if await self.rpc.get_transaction_receipt(tx_hash) is not None:
                    logger.info(f"Payout {tx_hash} already mined")
                    return tx_hash
                raise StaleNonceError(f"Nonce of {tx_hash} was used by another transaction") from e
            raise ExecutionError(f"Broadcast of {tx_hash} failed: {e}") from e

        if returned and returned.lower() != tx_hash.lower():
            logger.warning(f"Node returned hash {returned}, expected {tx_hash}")
            return returned
        return tx_hash

    async def receipt_status(self, tx_hash: str) -> Optional[bool]:
        """True if mined successfully, False if reverted, None if not mined."""
        receipt = await self.rpc.get_transaction_receipt(tx_hash)
        if receipt is None:
            return None
        return int(receipt.get("status", "0x0"), 16) == 1

    async def wait_for_confirmation(self, tx_hash: str) -> str:
        """Block until the payout is mined. Returns the confirmed hash."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout

        while True:
            try:
                status = await self.receipt_status(tx_hash)
            except RpcError as e:
                logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
                status = None

            if status is True:
                return tx_hash
            if status is False:
                raise ExecutionError(f"Payout {tx_hash} reverted")
            if loop.time() >= deadline:
                raise ExecutionError(
                    f"Payout {tx_hash} not confirmed within {self.confirmation_timeout}s"
                )
            await asyncio.sleep(self.poll_interval)

    async def execute(self, recipient: str, amount: int) -> str:
        """Sign, submit and confirm a payout. Returns the confirmed hash."""
        signed = await self.sign_transfer(recipient, amount)
        tx_hash = await self.submit(signed)
        return await self.wait_for_confirmation(tx_hash)
