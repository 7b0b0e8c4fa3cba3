"""Secondary price source keyed by token mint (Birdeye-style API)."""
from __future__ import annotations

import logging
import ssl
from decimal import Decimal
from typing import Mapping, Sequence

import aiohttp
import certifi

from ..config import FallbackPriceConfig
from .pricing import to_decimal

logger = logging.getLogger(__name__)


class FallbackPriceSource:
    """Fetch spot prices by mint from a ``{success, data: {mint: {value}}}`` endpoint."""

    def __init__(self, config: FallbackPriceConfig) -> None:
        self.endpoint = config.endpoint
        self.query_key = config.query_key
        self.timeout = config.timeout

    async def fetch_prices_by_mint(self, mints: Sequence[str]) -> dict[str, Decimal]:
        """Positive prices keyed by mint. Any failure is logged and yields ``{}``."""
        unique_mints = list(dict.fromkeys(mints))
        if not unique_mints:
            return {}

        url = f"{self.endpoint}?{self.query_key}={','.join(unique_mints)}"
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        logger.warning(
                            "Error fetching fallback prices: HTTP %s", response.status
                        )
                        return {}
                    payload = await response.json()
        except Exception as e:
            logger.warning("Error fetching fallback prices: %s", e)
            return {}

        if not isinstance(payload, dict) or not payload.get("success"):
            logger.warning("Fallback price response reported failure")
            return {}

        data = payload.get("data")
        if not isinstance(data, dict):
            logger.warning("Fallback price response has no price data")
            return {}

        prices: dict[str, Decimal] = {}
        for mint, price_data in data.items():
            if not isinstance(price_data, dict):
                continue
            raw = price_data.get("value")
            if raw is None:
                continue
            value = to_decimal(raw)
            if value is None or value <= 0:
                logger.warning("Ignoring fallback price %r for %s", raw, mint)
                continue
            prices[mint] = value
        return prices

    async def fetch_prices_by_feed_id(self, feed_mints: Mapping[str, str]) -> dict[str, Decimal]:
        """Prices keyed by feed id, given ``{feed_id: mint}``; zero prices are dropped."""
        prices = await self.fetch_prices_by_mint(list(feed_mints.values()))
        by_feed: dict[str, Decimal] = {}
        for feed_id, mint in feed_mints.items():
            price = prices.get(mint)
            if price:
                by_feed[feed_id] = price
        return by_feed
