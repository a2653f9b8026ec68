"""SOL/USD price oracle with a time-bounded cache.

The quote comes from Pyth's Hermes service. ``PriceOracleCache`` keeps the
last quote in a ``QuoteCell``: readers never take the lock, and a refresh
fetches outside the lock and then swaps the whole quote in. Two workers
racing on an expired quote may both fetch; only one swap wins.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import aiohttp

from pumpfun_indexer.errors import QuoteUnavailable

logger = logging.getLogger(__name__)

DEFAULT_HERMES_URL = "https://hermes.pyth.network/v2/updates/price/latest"
SOL_USD_FEED_ID = "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d"
DEFAULT_TTL_SECONDS = 30.0
DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class PriceQuote:
    """A USD price captured at a monotonic clock reading."""

    value_usd: float
    captured_at: float

    def age(self, now: float) -> float:
        return now - self.captured_at


class PriceFeed(Protocol):
    async def fetch_usd_price(self) -> float: ...


class PythPriceFeed:
    """Fetch the latest SOL/USD price from Pyth Hermes."""

    def __init__(
        self,
        *,
        url: str = DEFAULT_HERMES_URL,
        feed_id: str = SOL_USD_FEED_ID,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._url = url
        self._feed_id = feed_id
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    def parse_price(data: Any) -> float:
        """Parse ``parsed[0].price.{price, expo}`` into a float.

        Raises:
            QuoteUnavailable: If the document does not carry a usable price.
        """
        try:
            price = data["parsed"][0]["price"]
            mantissa = Decimal(str(price["price"]))
            exponent = int(price["expo"])
        except (KeyError, IndexError, TypeError, ValueError, InvalidOperation) as e:
            raise QuoteUnavailable(f"Malformed price document: {e!r}") from e
        value = float(mantissa.scaleb(exponent))
        if value <= 0:
            raise QuoteUnavailable(f"Non-positive price: {value}")
        return value

    async def fetch_usd_price(self) -> float:
        session = await self._ensure_session()
        try:
            async with session.get(
                self._url,
                params={"ids[]": self._feed_id},
                timeout=self._timeout,
            ) as resp:
                if resp.status != 200:
                    raise QuoteUnavailable(f"HTTP {resp.status} from price feed")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise QuoteUnavailable(f"Price feed request failed: {e}") from e
        return self.parse_price(data)


class QuoteCell:
    """Holds the current quote; replaced wholesale, never mutated."""

    def __init__(self) -> None:
        self._quote: PriceQuote | None = None
        self._lock = asyncio.Lock()

    def read(self) -> PriceQuote | None:
        return self._quote

    async def compare_and_swap(self, expected: PriceQuote | None, new: PriceQuote) -> bool:
        """Install ``new`` if the cell still holds ``expected``."""
        async with self._lock:
            if self._quote is not expected:
                return False
            self._quote = new
            return True


class PriceOracleCache:
    """TTL cache in front of a price feed.

    Example:
        ```python
        cache = PriceOracleCache(PythPriceFeed())
        usd = await cache.get_usd_price()
        ```
    """

    def __init__(
        self,
        feed: PriceFeed,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._feed = feed
        self._ttl = ttl_seconds
        self._clock = clock
        self._cell = QuoteCell()
        self.fetch_count = 0

    @property
    def cell(self) -> QuoteCell:
        return self._cell

    async def get_usd_price(self) -> float:
        """Return a quote younger than the TTL, refreshing it if needed.

        Raises:
            QuoteUnavailable: If the cached quote is stale and the feed fails.
        """
        current = self._cell.read()
        if current is not None and current.age(self._clock()) < self._ttl:
            return current.value_usd

        self.fetch_count += 1
        value = await self._feed.fetch_usd_price()
        fresh = PriceQuote(value_usd=value, captured_at=self._clock())
        if await self._cell.compare_and_swap(current, fresh):
            logger.debug("Refreshed SOL/USD quote: %.4f", value)
        else:
            logger.debug("Quote refreshed concurrently, keeping the other result")
        return value
