"""Minimal async JSON-RPC client for EVM chains."""

import logging
from typing import Any, Optional

import httpx

from swapback.errors import RpcError

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """JSON-RPC over HTTP with a per-call timeout.

    Every failure (transport, timeout, HTTP status, JSON-RPC error member)
    raises RpcError.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize client.

        Args:
            url: RPC endpoint
            timeout: Seconds allowed per call
            client: Shared httpx client (tests inject one with a mock transport)
        """
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._request_id = 0

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        """Execute a JSON-RPC method and return its result."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._request_id,
        }

        try:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise RpcError(f"{method} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RpcError(f"{method} transport error: {e}") from e

        if response.status_code != 200:
            raise RpcError(f"{method} failed with HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON") from e

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise RpcError(
                    f"{method} error: {error.get('message', error)}",
                    code=error.get("code"),
                )
            raise RpcError(f"{method} error: {error}")

        return data.get("result")

    async def block_number(self) -> int:
        """Get the current head block number."""
        return int(await self.call("eth_blockNumber"), 16)

    async def get_block(self, block_number: int) -> Optional[dict]:
        """Get a block header (without transactions)."""
        return await self.call("eth_getBlockByNumber", [hex(block_number), False])

    async def get_block_timestamp(self, block_number: int) -> Optional[int]:
        """Get a block's unix timestamp in seconds, or None if unknown."""
        block = await self.get_block(block_number)
        if not block:
            return None
        return int(block["timestamp"], 16)

    async def get_logs(
        self,
        address: str,
        from_block: int,
        to_block: int,
        topics: Optional[list] = None,
    ) -> list[dict]:
        """Get logs emitted by a contract over an inclusive block range."""
        log_filter: dict[str, Any] = {
            "address": address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        if topics:
            log_filter["topics"] = topics
        return await self.call("eth_getLogs", [log_filter]) or []

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def gas_price(self) -> int:
        return int(await self.call("eth_gasPrice"), 16)

    async def estimate_gas(self, tx: dict) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def send_raw_transaction(self, raw_tx_hex: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        if not raw_tx_hex.startswith("0x"):
            raw_tx_hex = f"0x{raw_tx_hex}"
        return await self.call("eth_sendRawTransaction", [raw_tx_hex])
