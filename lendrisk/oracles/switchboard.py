"""Switchboard pull-feed price oracle service."""
from __future__ import annotations

import asyncio
import logging
import ssl
import time
from decimal import Decimal
from typing import Sequence

import aiohttp
import certifi

from ..config import RiskConfig, SwitchboardConfig
from ..exceptions import OracleFetchError
from ..models import Bank, OraclePrice, OracleSetup, SwitchboardFeedData
from .fallback import FallbackPriceSource
from .pricing import build_price_with_confidence, median, to_decimal

logger = logging.getLogger(__name__)

SWITCHBOARD_PRICE_PRECISION = 18

SWITCHBOARD_SETUPS = frozenset(
    {
        OracleSetup.SWITCHBOARD_PULL,
        OracleSetup.SWITCHBOARD_V2,
        OracleSetup.KAMINO_SWITCHBOARD_PULL,
    }
)

# Scaled values a stalled feed reports instead of a price.
BROKEN_FEED_VALUES = frozenset({Decimal(0), Decimal("0.000001"), Decimal("0.00000001")})


def scale_raw_value(raw: str) -> Decimal:
    return Decimal(raw).scaleb(-SWITCHBOARD_PRICE_PRECISION)


def is_broken_feed(raw_price: str) -> bool:
    value = to_decimal(raw_price)
    if value is None:
        return True
    return value.scaleb(-SWITCHBOARD_PRICE_PRECISION) in BROKEN_FEED_VALUES


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class SwitchboardOracle:
    """Resolve Switchboard pull-feed prices.

    Feed account summaries come from ``feed_data_url``; healthy feeds are
    simulated on crossbar, broken feeds are priced from the fallback source
    by mint.
    """

    def __init__(
        self,
        config: SwitchboardConfig,
        fallback: FallbackPriceSource | None = None,
        risk: RiskConfig | None = None,
    ) -> None:
        risk = risk or RiskConfig()
        self.feed_data_url = config.feed_data_url
        self.feed_data_query_key = config.feed_data_query_key
        self.crossbar_url = config.crossbar_url
        self.crossbar_fallback_url = config.crossbar_fallback_url
        self.chunk_size = config.chunk_size
        self.timeout = config.timeout
        self.fallback = fallback
        self.conf_intervals = risk.swb_conf_intervals
        self.max_confidence_ratio = risk.max_confidence_interval_ratio

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _session() -> aiohttp.ClientSession:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        return aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=ssl_context))

    async def fetch_feed_data(self, oracle_keys: Sequence[str]) -> dict[str, SwitchboardFeedData]:
        """Feed account summaries keyed by oracle key.

        Raises:
            OracleFetchError: on a non-200 response.
        """
        keys = list(dict.fromkeys(oracle_keys))
        if not keys:
            return {}
        url = f"{self.feed_data_url}?{self.feed_data_query_key}={','.join(keys)}"

        async with self._session() as session:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise OracleFetchError(
                        f"Failed to fetch switchboard feed data: HTTP {response.status}"
                    )
                payload = await response.json()

        feeds: dict[str, SwitchboardFeedData] = {}
        for oracle_key, raw in (payload.get("data") or {}).items():
            feeds[oracle_key] = SwitchboardFeedData(
                queue=raw.get("queue", ""),
                feed_hash=raw.get("feedHash", ""),
                max_variance=str(raw.get("maxVariance", "0")),
                min_responses=int(raw.get("minResponses", 0)),
                raw_price=str(raw.get("rawPrice", "0")),
                stdev=str(raw.get("stdev", "0")),
            )
        return feeds

    async def _fetch_crossbar_chunk(
        self, session: aiohttp.ClientSession, endpoint: str, chunk: list[str]
    ) -> dict[str, list[Decimal]]:
        url = f"{endpoint}/simulate/{','.join(chunk)}"
        async with session.get(
            url,
            headers={"Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as response:
            if response.status != 200:
                raise OracleFetchError(f"Crossbar {endpoint} failed: HTTP {response.status}")
            payload = await response.json()

        valid: dict[str, list[Decimal]] = {}
        broken: list[str] = []
        for feed in payload or []:
            feed_hash = feed.get("feedHash")
            results = feed.get("results") or []
            first = to_decimal(results[0]) if results else None
            if feed_hash is None or first is None:
                broken.append(str(feed_hash))
                continue
            samples = [d for d in (to_decimal(r) for r in results) if d is not None]
            valid[feed_hash] = samples

        if broken:
            logger.info("Broken feeds from crossbar %s: %s", endpoint, ", ".join(broken))
        return valid

    async def _fetch_chunk_with_fallback(
        self, session: aiohttp.ClientSession, chunk: list[str]
    ) -> dict[str, list[Decimal]]:
        try:
            return await self._fetch_crossbar_chunk(session, self.crossbar_url, chunk)
        except Exception as primary_error:
            if not self.crossbar_fallback_url:
                raise
            logger.warning("Primary crossbar failed, trying fallback: %s", primary_error)
            return await self._fetch_crossbar_chunk(session, self.crossbar_fallback_url, chunk)

    async def fetch_crossbar_prices(self, feed_hashes: Sequence[str]) -> dict[str, list[Decimal]]:
        """Simulated samples for the valid feeds; failed chunks are logged and left out."""
        hashes = list(dict.fromkeys(feed_hashes))
        if not hashes:
            return {}

        async with self._session() as session:
            results = await asyncio.gather(
                *(
                    self._fetch_chunk_with_fallback(session, chunk)
                    for chunk in _chunks(hashes, self.chunk_size)
                ),
                return_exceptions=True,
            )

        samples: dict[str, list[Decimal]] = {}
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Crossbar chunk request failed: %s", result)
                continue
            samples.update(result)
        return samples

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_feed_price(
        self,
        feed: SwitchboardFeedData,
        samples: Sequence[Decimal] | None = None,
        timestamp: Decimal | None = None,
    ) -> OraclePrice:
        """Median of *samples*, or the on-account raw value when there are none.

        Spot and time-weighted records are the same sample.
        """
        price = median(samples) if samples else scale_raw_value(feed.raw_price)
        confidence = scale_raw_value(feed.stdev) * self.conf_intervals
        record = build_price_with_confidence(price, confidence, self.max_confidence_ratio)
        return OraclePrice(
            price_realtime=record,
            price_weighted=record,
            timestamp=timestamp if timestamp is not None else Decimal(int(time.time())),
            switchboard_data=feed,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_bank_prices(self, banks: Sequence[Bank]) -> dict[str, OraclePrice]:
        """Prices for Switchboard-backed banks, keyed by bank address.

        A feed-data transport failure is logged and yields an empty result.
        Broken feeds without a fallback price stay unresolved.
        """
        swb_banks = [b for b in banks if b.config.oracle_setup in SWITCHBOARD_SETUPS]
        if not swb_banks:
            return {}

        try:
            feed_data = await self.fetch_feed_data([b.oracle_key for b in swb_banks])
        except Exception as e:
            logger.error("Error fetching switchboard feed data: %s", e)
            return {}

        healthy_hashes: list[str] = []
        broken_feed_mints: dict[str, str] = {}
        for bank in swb_banks:
            feed = feed_data.get(bank.oracle_key)
            if feed is None:
                continue
            if is_broken_feed(feed.raw_price):
                broken_feed_mints[feed.feed_hash] = bank.mint
            else:
                healthy_hashes.append(feed.feed_hash)

        crossbar_samples = await self.fetch_crossbar_prices(healthy_hashes)

        fallback_prices: dict[str, Decimal] = {}
        if broken_feed_mints:
            if self.fallback is not None:
                fallback_prices = await self.fallback.fetch_prices_by_feed_id(broken_feed_mints)
            logger.warning(
                "%d broken switchboard feeds, %d priced by fallback",
                len(broken_feed_mints),
                len(fallback_prices),
            )

        result: dict[str, OraclePrice] = {}
        for bank in swb_banks:
            feed = feed_data.get(bank.oracle_key)
            if feed is None:
                logger.warning(
                    "No oracle feed found for bank %s oracle key %s",
                    bank.address,
                    bank.oracle_key,
                )
                continue

            if feed.feed_hash in broken_feed_mints:
                fallback_price = fallback_prices.get(feed.feed_hash)
                if fallback_price is None:
                    continue
                result[bank.address] = self.parse_feed_price(feed, [fallback_price])
            else:
                result[bank.address] = self.parse_feed_price(
                    feed, crossbar_samples.get(feed.feed_hash)
                )

        return result
