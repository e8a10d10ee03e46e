"""Price feed - where current market prices come from.

The engine depends only on the PriceFeed protocol and receives an instance
from its caller. A feed never raises across this boundary: a price of
Decimal(0) means "unavailable", and callers must leave any existing price
alone when they see it.

HttpPriceFeed talks to a CoinGecko-style API for crypto and a quote-style
API for stocks and ETFs:

    GET {crypto_url}/simple/price?ids=btc&vs_currencies=usd  -> {"btc": {"usd": 123.4}}
    GET {stock_url}/quote?symbol=AAPL&apikey=...              -> {"currentPrice": 189.2}
"""

import logging
import os
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from wallet.errors import PriceUnavailableError

logger = logging.getLogger(__name__)

UNAVAILABLE = Decimal("0")

CRYPTO_CATEGORIES = frozenset({"cryptocurrency", "crypto"})
QUOTE_CATEGORIES = frozenset({"stock", "etf"})

DEFAULT_CRYPTO_URL = "https://api.coingecko.com/api/v3"


class PriceFeed(Protocol):
    """Anything that can quote a current price for a symbol."""

    async def get_current_price(self, symbol: str, category: str) -> Decimal:
        """Current price, or Decimal(0) when no price is available."""
        ...


async def require_price(feed: PriceFeed, symbol: str, category: str) -> Decimal:
    """Fetch a price, turning "unavailable" into PriceUnavailableError."""
    price = await feed.get_current_price(symbol, category)
    if price is None or price <= 0:
        raise PriceUnavailableError(symbol, category)
    return price


class HttpPriceFeed:
    """Price feed backed by external HTTP market-data APIs."""

    def __init__(
        self,
        crypto_url: str = DEFAULT_CRYPTO_URL,
        stock_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.crypto_url = crypto_url.rstrip("/")
        self.stock_url = stock_url.rstrip("/") if stock_url else None
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "HttpPriceFeed":
        """Build a feed from PRICE_FEED_* environment variables."""
        return cls(
            crypto_url=os.getenv("PRICE_FEED_CRYPTO_URL", DEFAULT_CRYPTO_URL),
            stock_url=os.getenv("PRICE_FEED_STOCK_URL"),
            api_key=os.getenv("PRICE_FEED_API_KEY"),
            timeout=float(os.getenv("PRICE_FEED_TIMEOUT", "10")),
        )

    async def get_current_price(self, symbol: str, category: str) -> Decimal:
        category = category.lower()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if category in CRYPTO_CATEGORIES:
                    price = await self._crypto_price(client, symbol)
                elif category in QUOTE_CATEGORIES and self.stock_url:
                    price = await self._quote_price(client, symbol)
                else:
                    logger.warning(
                        "No price source for category",
                        extra={"symbol": symbol, "category": category},
                    )
                    return UNAVAILABLE
        except (httpx.HTTPError, KeyError, TypeError, ValueError, InvalidOperation):
            logger.exception(
                "Error fetching price",
                extra={"symbol": symbol, "category": category},
            )
            return UNAVAILABLE

        if price <= 0:
            return UNAVAILABLE
        return price

    async def _crypto_price(self, client: httpx.AsyncClient, symbol: str) -> Decimal:
        coin = symbol.lower()
        response = await client.get(
            f"{self.crypto_url}/simple/price",
            params={"ids": coin, "vs_currencies": "usd"},
        )
        response.raise_for_status()
        data = response.json(parse_float=Decimal)
        return Decimal(data[coin]["usd"])

    async def _quote_price(self, client: httpx.AsyncClient, symbol: str) -> Decimal:
        params = {"symbol": symbol.upper()}
        if self.api_key:
            params["apikey"] = self.api_key
        response = await client.get(f"{self.stock_url}/quote", params=params)
        response.raise_for_status()
        data = response.json(parse_float=Decimal)
        return Decimal(data["currentPrice"])
