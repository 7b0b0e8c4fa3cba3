"""Derived account metrics: liquidation price, net value, net APY."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Mapping

from ..bank.interest import apr_to_apy, compute_interest_rates
from ..bank.valuation import get_asset_weight, get_liability_weight, get_price
from ..models import (
    ZERO,
    Account,
    Bank,
    EmodeWeights,
    MarginRequirementType,
    OraclePrice,
    PriceBias,
    shorten_address,
)
from .balances import compute_balance_usd_value, compute_quantity_ui, get_balance
from .health import compute_health_components_from_cache

logger = logging.getLogger(__name__)


def compute_liquidation_price(
    bank: Bank,
    oracle_price: OraclePrice,
    account: Account,
    multiplier: Decimal | None = None,
    emode_weights: EmodeWeights | None = None,
) -> Decimal | None:
    """Spot price at which *account* hits zero Maintenance health through *bank*.

    The rest of the account is read from the health cache with this bank's
    own contribution removed. Returns ``None`` when no such price exists.
    """
    balance = get_balance(bank.address, account.balances)
    if not balance.active:
        return None

    own = compute_balance_usd_value(
        balance,
        bank,
        oracle_price,
        MarginRequirementType.MAINTENANCE,
        multiplier=multiplier,
        emode_weights=emode_weights,
    )
    account_maint = compute_health_components_from_cache(
        account, MarginRequirementType.MAINTENANCE
    )
    assets = account_maint.assets - own.assets
    liabilities = account_maint.liabilities - own.liabilities

    quantity = compute_quantity_ui(balance, bank, multiplier)
    spot = get_price(oracle_price, PriceBias.NONE, False)

    if balance.liability_shares == 0:
        if liabilities == 0:
            return None
        weight = get_asset_weight(
            bank,
            MarginRequirementType.MAINTENANCE,
            oracle_price,
            multiplier=multiplier,
            emode_weights=emode_weights,
        )
        denominator = quantity.assets * weight
        if denominator == 0:
            return None
        confidence = spot - get_price(oracle_price, PriceBias.LOWEST, False)
        price = (liabilities - assets) / denominator + confidence
    else:
        weight = get_liability_weight(bank.config, MarginRequirementType.MAINTENANCE)
        denominator = quantity.liabilities * weight
        if denominator == 0:
            return None
        confidence = get_price(oracle_price, PriceBias.HIGHEST, False) - spot
        price = (assets - liabilities) / denominator - confidence

    if price.is_nan() or not price.is_finite() or price < 0:
        return None
    return price


def compute_account_value(account: Account) -> Decimal:
    """Net Equity value from the health cache."""
    equity = compute_health_components_from_cache(account, MarginRequirementType.EQUITY)
    return equity.assets - equity.liabilities


def compute_net_apy(
    account: Account,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    multipliers: Mapping[str, Decimal] | None = None,
    emode_weights_by_bank: Mapping[str, EmodeWeights] | None = None,
) -> Decimal:
    """Lending minus borrowing APR weighted by USD value, compounded to APY."""
    total_value = compute_account_value(account)
    divisor = total_value if total_value != 0 else Decimal(1)

    apr = ZERO
    for balance in account.active_balances:
        bank_key = balance.bank_address
        bank = banks.get(bank_key)
        if bank is None:
            logger.warning(
                "Bank %s not found, excluding from APY computation", shorten_address(bank_key)
            )
            continue
        oracle_price = oracle_prices.get(bank_key)
        if oracle_price is None:
            logger.warning(
                "Price info for bank %s not found, excluding from APY computation",
                shorten_address(bank_key),
            )
            continue

        rates = compute_interest_rates(bank)
        values = compute_balance_usd_value(
            balance,
            bank,
            oracle_price,
            MarginRequirementType.EQUITY,
            multiplier=multipliers.get(bank_key) if multipliers else None,
            emode_weights=emode_weights_by_bank.get(bank_key) if emode_weights_by_bank else None,
        )
        apr += rates.lending_rate * values.assets / divisor
        apr -= rates.borrowing_rate * values.liabilities / divisor

    return apr_to_apy(apr)
