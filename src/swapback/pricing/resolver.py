"""ARB/USD price resolution from CoinGecko.

For a live transfer the spot price is used. For a backfilled transfer the
price is reconstructed from CoinGecko's historical range endpoint, whose
sampling granularity depends on how far back the query goes:

    within 1 day     -> ~5 minute samples   -> query T +/- 5 minutes
    within 90 days   -> hourly samples      -> query T +/- 1 hour
    older            -> daily samples       -> query T +/- 1 day

The chosen sample is the latest one not later than the transfer: a trade is
never priced from the future.

Any failure resolves to Decimal(0), which callers must treat as "no price".
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional, Protocol

import httpx

from swapback.errors import PriceResolutionError

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60

NO_PRICE = Decimal(0)


class BlockTimestampSource(Protocol):
    async def get_block_timestamp(self, block_number: int) -> Optional[int]: ...


@dataclass(frozen=True)
class PriceSample:
    """One point of a historical price series."""

    timestamp_ms: int
    price: Decimal


def query_window(block_timestamp: int, now: int) -> tuple[int, int]:
    """Return the [start, end] unix-seconds range to query around a block."""
    age = now - block_timestamp
    if age <= DAY:
        half_width = 5 * 60
    elif age <= 90 * DAY:
        half_width = 60 * 60
    else:
        half_width = DAY
    return block_timestamp - half_width, block_timestamp + half_width


def select_price(samples: Iterable[PriceSample], block_timestamp: int) -> Decimal:
    """Pick the latest sample at or before the block time (0 if none)."""
    cutoff = block_timestamp * 1000
    best: Optional[PriceSample] = None
    for sample in samples:
        if sample.timestamp_ms <= cutoff and (best is None or sample.timestamp_ms > best.timestamp_ms):
            best = sample
    return best.price if best is not None else NO_PRICE


class PriceResolver:
    """Resolves the ARB/USD rate for now or for a source-chain block."""

    def __init__(
        self,
        blocks: BlockTimestampSource,
        api_url: str = "https://api.coingecko.com/api/v3",
        coin_id: str = "arbitrum",
        api_key: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize resolver.

        Args:
            blocks: Source chain access used to look up block timestamps
            api_url: CoinGecko API base URL
            coin_id: CoinGecko coin ID of the payout asset
            api_key: Optional CoinGecko demo API key
            timeout: Seconds allowed per HTTP call
            client: Shared httpx client (tests inject one with a mock transport)
            clock: Returns the current unix time
        """
        self.blocks = blocks
        self.api_url = api_url.rstrip("/")
        self.coin_id = coin_id
        self.timeout = timeout
        self._clock = clock
        headers = {"accept": "application/json"}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._headers = headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, block_number: Optional[int] = None) -> Decimal:
        """Resolve the price for a block, or the spot price if no block.

        Never raises: failures are logged and return 0.
        """
        try:
            if block_number is None:
                price = await self.spot_price()
            else:
                price = await self.historical_price(block_number)
        except Exception as e:
            logger.error(f"Price resolution failed (block={block_number}): {e}")
            return NO_PRICE

        logger.info(f"ARB price {price} USD (block={block_number})")
        return price

    async def spot_price(self) -> Decimal:
        """Current price from the simple/price endpoint."""
        data = await self._get(
            "/simple/price",
            {"ids": self.coin_id, "vs_currencies": "usd", "precision": "6"},
        )
        try:
            return Decimal(str(data[self.coin_id]["usd"]))
        except (KeyError, TypeError) as e:
            raise PriceResolutionError(f"Unexpected spot price response: {data}") from e

    async def historical_price(self, block_number: int) -> Decimal:
        """Price prevailing at the time the block was mined."""
        block_timestamp = await self.blocks.get_block_timestamp(block_number)
        if block_timestamp is None:
            logger.warning(f"Block {block_number} not found")
            return NO_PRICE

        start, end = query_window(block_timestamp, int(self._clock()))
        data = await self._get(
            f"/coins/{self.coin_id}/market_chart/range",
            {
                "vs_currency": "usd",
                "from": str(start),
                "to": str(end),
                "precision": "6",
            },
        )

        try:
            samples = [
                PriceSample(timestamp_ms=int(ts), price=Decimal(str(price)))
                for ts, price in data.get("prices", [])
            ]
        except (TypeError, ValueError) as e:
            raise PriceResolutionError(f"Unexpected price history response: {e}") from e

        price = select_price(samples, block_timestamp)
        if price == NO_PRICE:
            logger.warning(
                f"No price sample at or before block {block_number} "
                f"(t={block_timestamp}, {len(samples)} samples)"
            )
        return price

    async def _get(self, path: str, params: dict) -> dict:
        response = await self._client.get(
            f"{self.api_url}{path}",
            params=params,
            headers=self._headers,
            timeout=self.timeout,
        )
        if response.status_code != 200:
            raise PriceResolutionError(f"CoinGecko {path} returned HTTP {response.status_code}")
        # Keep full precision: never round prices through float
        return response.json(parse_float=Decimal)
