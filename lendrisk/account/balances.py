"""Per-balance helpers: lookups, quantities, values and emissions."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from ..bank.shares import get_asset_quantity, get_liability_quantity
from ..bank.valuation import compute_asset_usd_value, compute_liability_usd_value
from ..models import (
    ZERO,
    Balance,
    Bank,
    EmodeWeights,
    MarginRequirementType,
    OraclePrice,
    PriceBias,
)

SECONDS_PER_YEAR = 31_536_000


@dataclass(frozen=True)
class BalanceAmounts:
    """Asset and liability side of a single balance (quantity or USD)."""

    assets: Decimal
    liabilities: Decimal


def get_active_balances(balances: Iterable[Balance]) -> list[Balance]:
    return [b for b in balances if b.active]


def get_balance(bank_address: str, balances: Iterable[Balance]) -> Balance:
    """Active balance for *bank_address*, or an empty inactive one."""
    for balance in balances:
        if balance.active and balance.bank_address == bank_address:
            return balance
    return Balance.empty(bank_address)


def compute_quantity(balance: Balance, bank: Bank) -> BalanceAmounts:
    """Native-unit quantities."""
    return BalanceAmounts(
        assets=get_asset_quantity(bank, balance.asset_shares),
        liabilities=get_liability_quantity(bank, balance.liability_shares),
    )


def compute_quantity_ui(
    balance: Balance, bank: Bank, multiplier: Decimal | None = None
) -> BalanceAmounts:
    """UI-unit quantities; the multiplier converts wrapped assets to the underlying."""
    native = compute_quantity(balance, bank)
    assets = native.assets * multiplier if multiplier is not None else native.assets
    scale = Decimal(10) ** bank.mint_decimals
    return BalanceAmounts(assets=assets / scale, liabilities=native.liabilities / scale)


def compute_balance_usd_value(
    balance: Balance,
    bank: Bank,
    oracle_price: OraclePrice,
    margin: MarginRequirementType,
    multiplier: Decimal | None = None,
    emode_weights: EmodeWeights | None = None,
) -> BalanceAmounts:
    """Weighted USD value at the neutral price."""
    return _balance_usd_value(
        balance,
        bank,
        oracle_price,
        margin,
        PriceBias.NONE,
        PriceBias.NONE,
        multiplier,
        emode_weights,
    )


def compute_balance_usd_value_with_bias(
    balance: Balance,
    bank: Bank,
    oracle_price: OraclePrice,
    margin: MarginRequirementType,
    multiplier: Decimal | None = None,
    emode_weights: EmodeWeights | None = None,
) -> BalanceAmounts:
    """Weighted USD value with assets at the lowest and liabilities at the highest price."""
    return _balance_usd_value(
        balance,
        bank,
        oracle_price,
        margin,
        PriceBias.LOWEST,
        PriceBias.HIGHEST,
        multiplier,
        emode_weights,
    )


def _balance_usd_value(
    balance: Balance,
    bank: Bank,
    oracle_price: OraclePrice,
    margin: MarginRequirementType,
    asset_bias: PriceBias,
    liability_bias: PriceBias,
    multiplier: Decimal | None,
    emode_weights: EmodeWeights | None,
) -> BalanceAmounts:
    assets = compute_asset_usd_value(
        bank,
        oracle_price,
        balance.asset_shares,
        margin,
        asset_bias,
        multiplier=multiplier,
        emode_weights=emode_weights,
    )
    liabilities = compute_liability_usd_value(
        bank, oracle_price, balance.liability_shares, margin, liability_bias
    )
    return BalanceAmounts(assets=assets, liabilities=liabilities)


# ---------------------------------------------------------------------------
# Emissions
# ---------------------------------------------------------------------------


def compute_claimed_emissions(balance: Balance, bank: Bank, current_timestamp: int) -> Decimal:
    """Emissions accrued since the balance's last update, capped by what the bank has left."""
    quantity = compute_quantity(balance, bank)

    if bank.emissions_active_lending:
        amount = quantity.assets
    elif bank.emissions_active_borrowing:
        amount = quantity.liabilities
    else:
        return ZERO

    period = Decimal(current_timestamp - balance.last_update)
    emissions = (
        period
        * amount
        * bank.emissions_rate
        / (SECONDS_PER_YEAR * Decimal(10) ** bank.mint_decimals)
    )
    return min(emissions, bank.emissions_remaining)


def compute_total_outstanding_emissions(
    balance: Balance, bank: Bank, current_timestamp: int
) -> Decimal:
    return balance.emissions_outstanding + compute_claimed_emissions(
        balance, bank, current_timestamp
    )
