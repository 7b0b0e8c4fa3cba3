"""Resolve one price record per bank, routing each bank by oracle strategy.

- Zero-oracle banks are priced at zero without any request.
- Fixed-price banks use their configured constant.
- Isolated-tier banks use a caller-supplied static price (zero when absent)
  unless ``isolated_fetch_prices`` is set, in which case they are fetched
  like collateral and the static price only fills gaps.
- Collateral banks are fetched from Pyth and Switchboard concurrently; any
  bank neither provider resolves gets an explicit zero record.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Sequence

from ..interfaces.price_provider import BankPriceProvider
from ..models import ZERO, ZERO_ORACLE_KEY, Bank, OraclePrice, OracleSetup, RiskTier
from .pricing import fixed_oracle_price, flat_oracle_price, zero_oracle_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BankClassification:
    zero_oracle: tuple[Bank, ...] = ()
    fixed: tuple[Bank, ...] = ()
    isolated: tuple[Bank, ...] = ()
    collateral: tuple[Bank, ...] = ()


@dataclass(frozen=True)
class OraclePriceMaps:
    by_bank: dict[str, OraclePrice] = field(default_factory=dict)
    by_mint: dict[str, OraclePrice] = field(default_factory=dict)


def classify_banks(banks: Sequence[Bank]) -> BankClassification:
    zero_oracle: list[Bank] = []
    fixed: list[Bank] = []
    isolated: list[Bank] = []
    collateral: list[Bank] = []

    for bank in banks:
        if ZERO_ORACLE_KEY in bank.config.oracle_keys:
            zero_oracle.append(bank)
        elif bank.config.oracle_setup is OracleSetup.FIXED:
            fixed.append(bank)
        elif bank.config.risk_tier is RiskTier.ISOLATED:
            isolated.append(bank)
        else:
            collateral.append(bank)

    return BankClassification(
        zero_oracle=tuple(zero_oracle),
        fixed=tuple(fixed),
        isolated=tuple(isolated),
        collateral=tuple(collateral),
    )


async def fetch_asset_prices(
    banks: Sequence[Bank],
    pyth: BankPriceProvider,
    switchboard: BankPriceProvider,
) -> dict[str, OraclePrice]:
    """Merged provider prices keyed by bank address, Switchboard winning ties."""
    if not banks:
        return {}

    pyth_prices, swb_prices = await asyncio.gather(
        pyth.fetch_bank_prices(banks),
        switchboard.fetch_bank_prices(banks),
    )
    merged = dict(pyth_prices)
    merged.update(swb_prices)
    return merged


async def resolve_oracle_prices(
    banks: Sequence[Bank],
    pyth: BankPriceProvider,
    switchboard: BankPriceProvider,
    isolated_fetch_prices: bool = False,
    isolated_static_prices: Mapping[str, Decimal] | None = None,
) -> OraclePriceMaps:
    """Price every bank in *banks*; no bank is left without a record."""
    classification = classify_banks(banks)
    static_prices = isolated_static_prices or {}
    timestamp = Decimal(int(time.time()))

    to_fetch = list(classification.collateral)
    if isolated_fetch_prices:
        to_fetch.extend(classification.isolated)
    fetched = await fetch_asset_prices(to_fetch, pyth, switchboard)

    by_bank: dict[str, OraclePrice] = {}
    for bank in classification.zero_oracle:
        by_bank[bank.address] = zero_oracle_price(timestamp)

    for bank in classification.isolated:
        price = fetched.get(bank.address)
        if price is None:
            price = flat_oracle_price(static_prices.get(bank.address, ZERO), timestamp)
        by_bank[bank.address] = price

    missing = []
    for bank in classification.collateral:
        price = fetched.get(bank.address)
        if price is None:
            missing.append(bank.address)
            price = zero_oracle_price(timestamp)
        by_bank[bank.address] = price
    if missing:
        logger.warning("No oracle price for %d banks, using zero: %s", len(missing), missing)

    for bank in classification.fixed:
        by_bank[bank.address] = fixed_oracle_price(bank.config.fixed_price, timestamp)

    by_mint = {bank.mint: by_bank[bank.address] for bank in banks if bank.address in by_bank}
    return OraclePriceMaps(by_bank=by_bank, by_mint=by_mint)
