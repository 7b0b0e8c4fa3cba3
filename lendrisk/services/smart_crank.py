"""Smart oracle cranking: the fewest pull-feed refreshes that keep an account healthy.

Only Switchboard pull feeds need a crank before use; every other provider is
treated as fresh. Liability feeds are always cranked, and an uncrankable
liability feed blocks the transaction outright. Asset feeds are cranked only
as far as needed for Initial health to stay positive after the pending
instructions run.
"""
from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from ..account.health import compute_asset_health_component, compute_liability_health_component
from ..account.projection import PendingInstruction, project_balances
from ..interfaces.crankability import CrankabilityChecker
from ..models import (
    MAX_BALANCES,
    SWITCHBOARD_PULL_SETUPS,
    Account,
    Bank,
    MarginRequirementType,
    OraclePrice,
    shorten_address,
)
from ..oracles.crankability import UncrankableBank, partition_banks_by_crankability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OracleToCrank:
    key: str
    price: OraclePrice


@dataclass(frozen=True)
class CrankCombination:
    banks: tuple[str, ...]
    oracles: tuple[OracleToCrank, ...]
    health_after: Decimal


@dataclass(frozen=True)
class SmartCrankResult:
    required_oracles: tuple[OracleToCrank, ...] = ()
    uncrankable_liabilities: tuple[UncrankableBank, ...] = ()
    uncrankable_assets: tuple[UncrankableBank, ...] = ()
    is_crankable: bool = True


def needs_crank(bank: Bank) -> bool:
    return bank.config.oracle_setup in SWITCHBOARD_PULL_SETUPS


def collect_oracles(
    bank_addresses: Iterable[str],
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
) -> tuple[OracleToCrank, ...]:
    """Oracle keys of *bank_addresses*, deduplicated, skipping banks without a price."""
    oracles: dict[str, OraclePrice] = {}
    for address in bank_addresses:
        bank = banks.get(address)
        if bank is None:
            continue
        price = oracle_prices.get(bank.address)
        if price is not None and bank.oracle_key not in oracles:
            oracles[bank.oracle_key] = price
    return tuple(OracleToCrank(key, price) for key, price in oracles.items())


def rank_combinations(combinations: Sequence[CrankCombination]) -> list[CrankCombination]:
    """Fewest oracle cranks first, then highest resulting health."""
    return sorted(combinations, key=lambda c: (len(c.oracles), -c.health_after))


async def plan_oracle_crank(
    account: Account,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    instructions: Sequence[PendingInstruction],
    checker: CrankabilityChecker,
    multipliers: Mapping[str, Decimal] | None = None,
    max_combination_size: int | None = None,
    timeout: float | None = None,
) -> SmartCrankResult:
    """Pick the oracles to crank ahead of *instructions*.

    Raises whatever :func:`project_balances` raises for an invalid
    instruction sequence or a full account.
    """
    projection = project_balances(account.balances, instructions, banks, multipliers)
    projected = projection.balances

    def banks_for(balances: Iterable) -> list[Bank]:
        return [banks[b.bank_address] for b in balances if b.bank_address in banks]

    liability_banks = banks_for(b for b in projected if b.active and b.liability_shares > 0)
    asset_banks = banks_for(b for b in projected if b.active and b.asset_shares > 0)

    if not liability_banks:
        return SmartCrankResult()

    active_pull_banks = [b for b in liability_banks + asset_banks if needs_crank(b)]
    if not active_pull_banks:
        return SmartCrankResult()

    results = await checker.check_crankability(active_pull_banks, oracle_prices)
    crankable, uncrankable = partition_banks_by_crankability(active_pull_banks, results)
    crankable_addresses = {b.address for b in crankable}

    liability_addresses = {b.address for b in liability_banks}
    asset_addresses = {b.address for b in asset_banks}
    uncrankable_liabilities = tuple(
        u for u in uncrankable if u.bank.address in liability_addresses
    )
    uncrankable_assets = tuple(u for u in uncrankable if u.bank.address in asset_addresses)

    if uncrankable_liabilities:
        logger.warning(
            "Blocked: uncrankable liabilities %s",
            ", ".join(
                u.bank.token_symbol or shorten_address(u.bank.address)
                for u in uncrankable_liabilities
            ),
        )
        return SmartCrankResult(
            uncrankable_liabilities=uncrankable_liabilities,
            uncrankable_assets=uncrankable_assets,
            is_crankable=False,
        )

    def asset_health(addresses: Iterable[str]) -> Decimal:
        return compute_asset_health_component(
            projected,
            banks,
            oracle_prices,
            addresses,
            MarginRequirementType.INITIAL,
            multipliers=multipliers,
        )

    total_liabilities = compute_liability_health_component(
        projected,
        banks,
        oracle_prices,
        [b.address for b in liability_banks],
        MarginRequirementType.INITIAL,
    )
    liability_pull_addresses = [b.address for b in liability_banks if needs_crank(b)]
    fresh_assets = [b.address for b in asset_banks if not needs_crank(b)]
    pull_assets = [b for b in asset_banks if needs_crank(b) and b.address in crankable_addresses]

    if fresh_assets and asset_health(fresh_assets) - total_liabilities > 0:
        logger.info("Fresh assets cover liabilities, cranking liability feeds only")
        return SmartCrankResult(
            required_oracles=collect_oracles(liability_pull_addresses, banks, oracle_prices),
            uncrankable_assets=uncrankable_assets,
        )

    all_assets = fresh_assets + [b.address for b in pull_assets]
    health_with_all = asset_health(all_assets) - total_liabilities
    if health_with_all <= 0:
        logger.warning("Assets do not cover liabilities even with every feed cranked")
        if uncrankable_assets:
            return SmartCrankResult(uncrankable_assets=uncrankable_assets, is_crankable=False)
        return SmartCrankResult(
            required_oracles=collect_oracles(
                [b.address for b in active_pull_banks], banks, oracle_prices
            )
        )

    full_crank = CrankCombination(
        banks=tuple(b.address for b in crankable),
        oracles=collect_oracles([b.address for b in crankable], banks, oracle_prices),
        health_after=health_with_all,
    )
    combinations = [full_crank]

    liability_oracle_keys = {b.oracle_key for b in liability_banks}
    if max_combination_size is None:
        max_combination_size = MAX_BALANCES
    size_cap = min(len(pull_assets) - 1, max_combination_size)
    deadline = time.monotonic() + timeout if timeout is not None else None

    for size in range(1, size_cap + 1):
        for subset in itertools.combinations(pull_assets, size):
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning("Crank search timed out, falling back to a full crank")
                return SmartCrankResult(
                    required_oracles=full_crank.oracles, uncrankable_assets=uncrankable_assets
                )

            subset_addresses = [b.address for b in subset]
            health = asset_health(fresh_assets + subset_addresses) - total_liabilities
            if health <= 0:
                continue

            extra = [b.address for b in subset if b.oracle_key not in liability_oracle_keys]
            selected = tuple(dict.fromkeys(liability_pull_addresses + extra))
            combinations.append(
                CrankCombination(
                    banks=selected,
                    oracles=collect_oracles(selected, banks, oracle_prices),
                    health_after=health,
                )
            )

    best = rank_combinations(combinations)[0]
    logger.debug(
        "Cranking %d of %d candidate oracles (health after %s)",
        len(best.oracles),
        len(full_crank.oracles),
        best.health_after,
    )
    return SmartCrankResult(required_oracles=best.oracles, uncrankable_assets=uncrankable_assets)
