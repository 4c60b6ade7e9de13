"""ERC-20 Transfer events observed on the source chain."""

import json
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from swapback.errors import DecodeError

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    return "0x" + address.lower().removeprefix("0x").zfill(64)


def topic_address(topic: str) -> str:
    """Extract the checksummed address from a 32-byte log topic."""
    return Web3.to_checksum_address("0x" + topic.lower().removeprefix("0x")[-40:])


def _to_int(value) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass
class TransferEvent:
    """One detected transfer, as queued for settlement.

    block_number is set only for backfilled or replayed events; its presence
    selects historical instead of spot price resolution.
    """

    log: dict
    block_number: Optional[int] = None

    @property
    def transaction_hash(self) -> str:
        return str(self.log.get("transactionHash", "")).lower()

    @property
    def log_block_number(self) -> int:
        return _to_int(self.log["blockNumber"])

    @property
    def log_index(self) -> int:
        return _to_int(self.log.get("logIndex", "0x0"))

    def to_json(self) -> str:
        """Serialize for the failed attempts table."""
        data: dict = {"log": self.log}
        if self.block_number is not None:
            data["blockNumber"] = self.block_number
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "TransferEvent":
        data = json.loads(raw)
        if not isinstance(data, dict) or not isinstance(data.get("log"), dict):
            raise DecodeError("Serialized event has no log")
        block_number = data.get("blockNumber")
        return cls(
            log=data["log"],
            block_number=int(block_number) if block_number is not None else None,
        )


@dataclass(frozen=True)
class DecodedTransfer:
    """Decoded fields of a Transfer log."""

    sender: str
    recipient: str
    value: int
    transaction_hash: str
    block_number: int
    log_index: int


def decode_transfer(log: dict, recipient: Optional[str] = None) -> DecodedTransfer:
    """Decode a raw Transfer log.

    Args:
        log: Raw JSON-RPC log object
        recipient: If given, the decoded recipient must equal this address

    Raises:
        DecodeError: Log is not a Transfer or is addressed elsewhere
    """
    topics = [t.lower() for t in log.get("topics") or []]
    if not topics or topics[0] != TRANSFER_TOPIC:
        raise DecodeError("Log is not a Transfer event")
    if len(topics) != 3:
        raise DecodeError(f"Transfer log has {len(topics)} topics, expected 3")

    data = (log.get("data") or "0x").lower().removeprefix("0x")
    if len(data) != 64:
        raise DecodeError("Transfer log data is not a single uint256")

    try:
        to_address = topic_address(topics[2])
    except ValueError as e:
        raise DecodeError(f"Malformed recipient topic: {e}") from e
    if recipient is not None and to_address.lower() != recipient.lower():
        raise DecodeError(f"Transfer recipient {to_address} is not the listener")

    try:
        return DecodedTransfer(
            sender=topic_address(topics[1]),
            recipient=to_address,
            value=int(data, 16),
            transaction_hash=log["transactionHash"].lower(),
            block_number=_to_int(log["blockNumber"]),
            log_index=_to_int(log.get("logIndex", "0x0")),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed Transfer log: {e}") from e
