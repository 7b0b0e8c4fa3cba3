"""Pyth Network price oracle service."""
from __future__ import annotations

import logging
import ssl
from decimal import Decimal
from typing import Any, Sequence

import aiohttp
import certifi

from ..config import PythConfig, RiskConfig
from ..exceptions import OracleFetchError
from ..models import Bank, OraclePrice, OracleSetup, PriceWithConfidence
from .pricing import build_price_with_confidence, scale_price, zero_oracle_price

logger = logging.getLogger(__name__)

PYTH_DIRECT_SETUPS = frozenset(
    {OracleSetup.PYTH_LEGACY, OracleSetup.PYTH_PUSH_ORACLE, OracleSetup.KAMINO_PYTH_PUSH}
)


def _normalize_feed_id(feed_id: str) -> str:
    return feed_id.lower().removeprefix("0x")


class PythOracle:
    """Fetch prices from the Pyth Hermes API."""

    def __init__(self, config: PythConfig, risk: RiskConfig | None = None) -> None:
        risk = risk or RiskConfig()
        self.hermes_url = config.hermes_url
        self.timeout = config.timeout
        self.feeds = dict(config.feeds)
        self.staked_coefficients = dict(config.staked_coefficients)
        self.conf_intervals = risk.pyth_conf_intervals
        self.max_confidence_ratio = risk.max_confidence_interval_ratio

    def feed_id_for(self, bank: Bank) -> str:
        """Hermes feed id for a bank; oracle keys without a mapping are used as-is."""
        return self.feeds.get(bank.oracle_key, bank.oracle_key)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parse_component(self, raw: dict[str, Any]) -> PriceWithConfidence:
        expo = int(raw.get("expo", 0))
        price = Decimal(str(raw.get("price", 0))).scaleb(expo)
        confidence = Decimal(str(raw.get("conf", 0))).scaleb(expo) * self.conf_intervals
        return build_price_with_confidence(price, confidence, self.max_confidence_ratio)

    def parse_price_update(self, item: dict[str, Any]) -> OraclePrice:
        """Hermes ``parsed`` entry → price record; a zero price gives a zero record."""
        spot = item.get("price") or {}
        ema = item.get("ema_price") or spot
        timestamp = Decimal(int(spot.get("publish_time", 0)))

        realtime = self._parse_component(spot)
        if realtime.price == 0:
            return zero_oracle_price(timestamp)

        return OraclePrice(
            price_realtime=realtime,
            price_weighted=self._parse_component(ema),
            timestamp=timestamp,
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_prices_by_feed(self, feed_ids: Sequence[str]) -> dict[str, OraclePrice]:
        """Latest prices keyed by normalized feed id.

        Raises:
            OracleFetchError: on a non-200 response.
        """
        unique_ids = list(dict.fromkeys(_normalize_feed_id(f) for f in feed_ids))
        if not unique_ids:
            return {}

        query_params = "&".join(f"ids[]={fid}" for fid in unique_ids)
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise OracleFetchError(
                        f"Error fetching prices from Pyth: HTTP {response.status}"
                    )
                data = await response.json()

        prices: dict[str, OraclePrice] = {}
        for item in data.get("parsed", []):
            feed_id = item.get("id")
            if not feed_id:
                continue
            prices[_normalize_feed_id(feed_id)] = self.parse_price_update(item)

        logger.info("Fetched %d prices from Pyth", len(prices))
        return prices

    async def fetch_bank_prices(self, banks: Sequence[Bank]) -> dict[str, OraclePrice]:
        """Prices for Pyth-backed banks, keyed by bank address.

        Staked-collateral banks are priced from their oracle scaled by a
        configured coefficient and skipped without one. Transport errors are
        logged and yield an empty result.
        """
        direct = [b for b in banks if b.config.oracle_setup in PYTH_DIRECT_SETUPS]
        staked = [
            b for b in banks if b.config.oracle_setup is OracleSetup.STAKED_WITH_PYTH_PUSH
        ]
        if not direct and not staked:
            return {}

        try:
            by_feed = await self.fetch_prices_by_feed(
                [self.feed_id_for(b) for b in direct + staked]
            )
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        result: dict[str, OraclePrice] = {}
        for bank in direct:
            oracle_price = by_feed.get(_normalize_feed_id(self.feed_id_for(bank)))
            if oracle_price is not None:
                result[bank.address] = oracle_price

        for bank in staked:
            coefficient = self.staked_coefficients.get(bank.address)
            oracle_price = by_feed.get(_normalize_feed_id(self.feed_id_for(bank)))
            if coefficient is None:
                logger.warning("No staked price coefficient for bank %s", bank.address)
                continue
            if oracle_price is None:
                continue
            result[bank.address] = OraclePrice(
                price_realtime=scale_price(oracle_price.price_realtime, coefficient),
                price_weighted=scale_price(oracle_price.price_weighted, coefficient),
                timestamp=oracle_price.timestamp,
            )

        return result
