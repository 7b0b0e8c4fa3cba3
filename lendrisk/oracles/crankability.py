"""Crossbar crankability checks for Switchboard pull feeds."""
from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Mapping, Sequence

import aiohttp
import certifi

from ..config import CrankConfig
from ..models import Bank, CrankabilityResult, OraclePrice
from .pricing import to_decimal
from .switchboard import SwitchboardOracle

logger = logging.getLogger(__name__)

NO_RESULT_REASON = "No crankability check result available"
INVALID_PAYLOAD_REASON = "Unexpected Crossbar response"


@dataclass(frozen=True)
class UncrankableBank:
    bank: Bank
    reason: str


class CrossbarCrankabilityChecker:
    """Ask crossbar to simulate feeds; a feed is crankable if its first result is numeric.

    Transport failures mark every queried feed uncrankable. Without a
    crossbar URL every feed with a known hash is reported crankable.
    """

    def __init__(self, config: CrankConfig, feed_source: SwitchboardOracle | None = None) -> None:
        self.crossbar_url = config.crossbar_url
        self.timeout = config.timeout
        self.feed_source = feed_source

    async def check_feed_hashes(self, feed_hashes: Sequence[str]) -> dict[str, CrankabilityResult]:
        """Results keyed by feed hash, from one batched simulate request."""
        hashes = list(dict.fromkeys(feed_hashes))
        if not hashes:
            return {}

        url = f"{self.crossbar_url}/simulate/{','.join(hashes)}"
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url,
                    headers={"Accept": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        reason = f"HTTP {response.status}: {response.reason}"
                        logger.warning("Crankability check failed: %s", reason)
                        return {h: CrankabilityResult(False, reason) for h in hashes}
                    payload = await response.json()
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning("Crankability check failed: %s", reason)
            return {h: CrankabilityResult(False, reason) for h in hashes}

        if not isinstance(payload, list):
            logger.warning("Crankability check failed: %s", INVALID_PAYLOAD_REASON)
            return {h: CrankabilityResult(False, INVALID_PAYLOAD_REASON) for h in hashes}

        results: dict[str, CrankabilityResult] = {}
        for feed in payload:
            if not isinstance(feed, dict):
                continue
            feed_hash = feed.get("feedHash")
            if not isinstance(feed_hash, str):
                continue
            feed_results = feed.get("results")
            valid = (
                isinstance(feed_results, list)
                and bool(feed_results)
                and to_decimal(feed_results[0]) is not None
            )
            results[feed_hash] = CrankabilityResult(
                valid, None if valid else "Invalid feed response"
            )

        for feed_hash in hashes:
            if feed_hash not in results:
                results[feed_hash] = CrankabilityResult(False, "No response from Crossbar")
        return results

    async def _resolve_feed_hashes(
        self, banks: Sequence[Bank], oracle_prices: Mapping[str, OraclePrice]
    ) -> dict[str, str]:
        feed_hashes: dict[str, str] = {}
        missing: list[Bank] = []
        for bank in banks:
            price = oracle_prices.get(bank.address)
            feed_hash = price.switchboard_data.feed_hash if price and price.switchboard_data else ""
            if feed_hash:
                feed_hashes[bank.oracle_key] = feed_hash
            else:
                missing.append(bank)

        if missing and self.feed_source is not None:
            try:
                fetched = await self.feed_source.fetch_feed_data([b.oracle_key for b in missing])
            except Exception as e:
                logger.error("Failed to fetch feed hashes: %s", e)
                fetched = {}
            for oracle_key, feed in fetched.items():
                if feed.feed_hash:
                    feed_hashes[oracle_key] = feed.feed_hash
        return feed_hashes

    async def check_crankability(
        self, banks: Sequence[Bank], oracle_prices: Mapping[str, OraclePrice]
    ) -> dict[str, CrankabilityResult]:
        """Results keyed by oracle key."""
        feed_hashes = await self._resolve_feed_hashes(banks, oracle_prices)

        results: dict[str, CrankabilityResult] = {}
        to_check: dict[str, list[str]] = {}
        for bank in banks:
            feed_hash = feed_hashes.get(bank.oracle_key)
            if not feed_hash:
                results[bank.oracle_key] = CrankabilityResult(False, "Feed hash not available")
                continue
            to_check.setdefault(feed_hash, []).append(bank.oracle_key)

        if not to_check:
            return results

        if not self.crossbar_url:
            for oracle_keys in to_check.values():
                for oracle_key in oracle_keys:
                    results[oracle_key] = CrankabilityResult(
                        True, "Test mode - no crankability check"
                    )
            return results

        by_hash = await self.check_feed_hashes(list(to_check))
        for feed_hash, result in by_hash.items():
            for oracle_key in to_check.get(feed_hash, []):
                results[oracle_key] = result
        return results


def partition_banks_by_crankability(
    banks: Sequence[Bank], results: Mapping[str, CrankabilityResult]
) -> tuple[list[Bank], list[UncrankableBank]]:
    """Split *banks* into crankable and uncrankable; a missing result is uncrankable."""
    crankable: list[Bank] = []
    uncrankable: list[UncrankableBank] = []
    for bank in banks:
        result = results.get(bank.oracle_key)
        if result is None:
            uncrankable.append(UncrankableBank(bank, NO_RESULT_REASON))
        elif result.is_crankable:
            crankable.append(bank)
        else:
            uncrankable.append(UncrankableBank(bank, result.reason or "Unknown reason"))
    return crankable, uncrankable
