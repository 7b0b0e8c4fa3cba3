"""Account health aggregation and the cached read path."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from ..models import (
    ZERO,
    Account,
    Balance,
    Bank,
    EmodeWeights,
    HealthCache,
    HealthCacheStatus,
    MarginRequirementType,
    OraclePrice,
    shorten_address,
)
from .balances import compute_balance_usd_value, compute_balance_usd_value_with_bias

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthComponents:
    assets: Decimal
    liabilities: Decimal

    @property
    def health(self) -> Decimal:
        return self.assets - self.liabilities


def compute_health_components(
    balances: Iterable[Balance],
    margin: MarginRequirementType,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    excluded_banks: Iterable[str] = (),
    with_bias: bool = True,
) -> HealthComponents:
    """Sum weighted asset and liability values over the active balances.

    Balances whose bank or price cannot be resolved are logged and skipped.
    ``with_bias`` values assets at the lowest and liabilities at the highest
    price; without it both use the neutral price.
    """
    excluded = set(excluded_banks)
    value_fn = compute_balance_usd_value_with_bias if with_bias else compute_balance_usd_value

    total_assets = ZERO
    total_liabilities = ZERO

    for balance in balances:
        if not balance.active or balance.bank_address in excluded:
            continue
        bank_key = balance.bank_address

        bank = banks.get(bank_key)
        if bank is None:
            logger.warning(
                "Bank %s not found, excluding from health computation",
                shorten_address(bank_key),
            )
            continue

        oracle_price = oracle_prices.get(bank_key)
        if oracle_price is None:
            logger.warning(
                "Price info for bank %s not found, excluding from health computation",
                shorten_address(bank_key),
            )
            continue

        multiplier = multipliers.get(bank_key) if multipliers else None
        emode_weights = emode_weights_by_bank.get(bank_key) if emode_weights_by_bank else None

        values = value_fn(
            balance,
            bank,
            oracle_price,
            margin,
            multiplier=multiplier,
            emode_weights=emode_weights,
        )
        total_assets += values.assets
        total_liabilities += values.liabilities

    return HealthComponents(assets=total_assets, liabilities=total_liabilities)


def compute_health_components_without_bias(
    balances: Iterable[Balance],
    margin: MarginRequirementType,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    excluded_banks: Iterable[str] = (),
) -> HealthComponents:
    return compute_health_components(
        balances,
        margin,
        banks,
        oracle_prices,
        multipliers=multipliers,
        emode_weights_by_bank=emode_weights_by_bank,
        excluded_banks=excluded_banks,
        with_bias=False,
    )


def compute_health_cache(
    balances: Iterable[Balance],
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    timestamp: int = 0,
) -> HealthCache:
    """Equity at neutral prices; Initial and Maintenance with conservative bias."""
    balances = list(balances)
    kwargs = {"multipliers": multipliers, "emode_weights_by_bank": emode_weights_by_bank}

    equity = compute_health_components_without_bias(
        balances, MarginRequirementType.EQUITY, banks, oracle_prices, **kwargs
    )
    maint = compute_health_components(
        balances, MarginRequirementType.MAINTENANCE, banks, oracle_prices, **kwargs
    )
    initial = compute_health_components(
        balances, MarginRequirementType.INITIAL, banks, oracle_prices, **kwargs
    )

    return HealthCache(
        asset_value=initial.assets,
        liability_value=initial.liabilities,
        asset_value_maint=maint.assets,
        liability_value_maint=maint.liabilities,
        asset_value_equity=equity.assets,
        liability_value_equity=equity.liabilities,
        timestamp=timestamp,
        status=HealthCacheStatus.COMPUTED,
    )


def refresh_health_cache(
    account: Account,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    timestamp: int = 0,
) -> Account:
    """Copy of *account* carrying a freshly computed health cache."""
    cache = compute_health_cache(
        account.balances,
        banks,
        oracle_prices,
        multipliers=multipliers,
        emode_weights_by_bank=emode_weights_by_bank,
        timestamp=timestamp,
    )
    return account.with_health_cache(cache)


def compute_health(
    account: Account,
    margin: MarginRequirementType,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    excluded_banks: Iterable[str] = (),
) -> HealthComponents:
    """Assets and liabilities of *account* for *margin*.

    Equity is valued at neutral prices, the other margins conservatively.
    """
    return compute_health_components(
        account.balances,
        margin,
        banks,
        oracle_prices,
        multipliers=multipliers,
        emode_weights_by_bank=emode_weights_by_bank,
        excluded_banks=excluded_banks,
        with_bias=margin is not MarginRequirementType.EQUITY,
    )


def compute_health_components_from_cache(
    account: Account, margin: MarginRequirementType
) -> HealthComponents:
    cache = account.health_cache
    if cache.status is HealthCacheStatus.UNSET:
        logger.warning(
            "Health cache not computed for account %s yet", shorten_address(account.address)
        )

    if margin is MarginRequirementType.EQUITY:
        return HealthComponents(cache.asset_value_equity, cache.liability_value_equity)
    if margin is MarginRequirementType.MAINTENANCE:
        return HealthComponents(cache.asset_value_maint, cache.liability_value_maint)
    return HealthComponents(cache.asset_value, cache.liability_value)


def compute_free_collateral(
    balances: Iterable[Balance],
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
    clamped: bool = True,
) -> Decimal:
    """Initial assets minus Initial liabilities, floored at zero when clamped."""
    components = compute_health_components(
        balances,
        MarginRequirementType.INITIAL,
        banks,
        oracle_prices,
        multipliers=multipliers,
        emode_weights_by_bank=emode_weights_by_bank,
    )
    signed = components.health
    return max(ZERO, signed) if clamped else signed


def compute_free_collateral_from_cache(account: Account, clamped: bool = True) -> Decimal:
    components = compute_health_components_from_cache(account, MarginRequirementType.INITIAL)
    signed = components.health
    return max(ZERO, signed) if clamped else signed


def compute_asset_health_component(
    balances: Iterable[Balance],
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    asset_banks: Iterable[str],
    margin: MarginRequirementType,
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
) -> Decimal:
    """Weighted asset value restricted to *asset_banks*."""
    wanted = set(asset_banks)
    subset = [b for b in balances if b.active and b.bank_address in wanted]
    return compute_health_components(
        subset,
        margin,
        banks,
        oracle_prices,
        multipliers=multipliers,
        emode_weights_by_bank=emode_weights_by_bank,
    ).assets


def compute_liability_health_component(
    balances: Iterable[Balance],
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    liability_banks: Iterable[str],
    margin: MarginRequirementType,
) -> Decimal:
    """Weighted liability value restricted to *liability_banks*."""
    wanted = set(liability_banks)
    subset = [b for b in balances if b.active and b.bank_address in wanted]
    return compute_health_components(subset, margin, banks, oracle_prices).liabilities
