"""Maximum borrow and withdraw amounts for a single bank.

Both solvers return UI-unit quantities (native / 10^decimals) and never a
negative amount.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Mapping

from ..bank.valuation import (
    compute_asset_usd_value,
    get_asset_weight,
    get_liability_weight,
    get_price,
)
from ..exceptions import BankNotFoundError, PriceNotFoundError
from ..models import (
    ONE,
    ZERO,
    Account,
    Bank,
    EmodePair,
    EmodeWeights,
    MarginRequirementType,
    OraclePrice,
    PriceBias,
    RiskTier,
)
from .balances import compute_quantity_ui, get_active_balances, get_balance
from .health import (
    HealthComponents,
    compute_free_collateral,
    compute_free_collateral_from_cache,
    compute_health_components,
    compute_health_components_from_cache,
)

logger = logging.getLogger(__name__)


def apply_emode_pair(banks: Mapping[str, Bank], pair: EmodePair) -> dict[str, Bank]:
    """Raise the asset weights of every bank tagged into *pair*."""
    weights = EmodeWeights(pair.asset_weight_init, pair.asset_weight_maint)
    effective = dict(banks)
    for key, bank in banks.items():
        if bank.emode_tag and bank.emode_tag in pair.collateral_bank_tags:
            effective[key] = bank.with_emode_weights(weights)
    return effective


def _lookup(
    banks: Mapping[str, Bank], oracle_prices: Mapping[str, OraclePrice], bank_address: str
) -> tuple[Bank, OraclePrice]:
    bank = banks.get(bank_address)
    if bank is None:
        raise BankNotFoundError(bank_address)
    oracle_price = oracle_prices.get(bank_address)
    if oracle_price is None:
        raise PriceNotFoundError(bank_address)
    return bank, oracle_price


def _safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    # a zero price or weight leaves nothing to convert
    if denominator == 0:
        return ZERO
    return numerator / denominator


def has_isolated_conflict(
    account: Account, banks: Mapping[str, Bank], bank: Bank
) -> bool:
    """True when borrowing from *bank* would mix isolated debt with other debt."""
    debts = [b for b in get_active_balances(account.balances) if b.liability_shares > 0]

    other_debt = any(b.bank_address != bank.address for b in debts)
    if bank.config.risk_tier is RiskTier.ISOLATED and other_debt:
        return True

    for debt in debts:
        debt_bank = banks.get(debt.bank_address)
        if debt_bank is None:
            continue
        if debt_bank.config.risk_tier is RiskTier.ISOLATED and debt_bank.address != bank.address:
            return True
    return False


def compute_max_borrow(
    account: Account,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    bank_address: str,
    volatility_factor: Decimal = ONE,
    emode_pair: EmodePair | None = None,
    use_cache: bool = False,
) -> Decimal:
    """Largest amount of *bank_address* the account can borrow at Initial margin."""
    effective_banks = apply_emode_pair(banks, emode_pair) if emode_pair else banks
    bank, oracle_price = _lookup(effective_banks, oracle_prices, bank_address)

    if has_isolated_conflict(account, effective_banks, bank):
        logger.info("Borrow from bank %s blocked by isolated-tier debt", bank_address)
        return ZERO

    active = get_active_balances(account.balances)
    balance = get_balance(bank_address, active)

    if use_cache and emode_pair is None:
        free_collateral = compute_free_collateral_from_cache(account)
    else:
        free_collateral = compute_free_collateral(active, effective_banks, oracle_prices)
    free_collateral *= volatility_factor

    untied = min(
        compute_asset_usd_value(
            bank,
            oracle_price,
            balance.asset_shares,
            MarginRequirementType.INITIAL,
            PriceBias.LOWEST,
        ),
        free_collateral,
    )

    price_lowest = get_price(oracle_price, PriceBias.LOWEST, True)
    price_highest = get_price(oracle_price, PriceBias.HIGHEST, True)
    asset_weight = get_asset_weight(bank, MarginRequirementType.INITIAL, oracle_price)
    liability_weight = get_liability_weight(bank.config, MarginRequirementType.INITIAL)

    borrowable = _safe_div(free_collateral - untied, price_highest * liability_weight)
    if asset_weight == 0:
        max_borrow = compute_quantity_ui(balance, bank).assets + borrowable
    else:
        max_borrow = _safe_div(untied, price_lowest * asset_weight) + borrowable

    return max(max_borrow, ZERO)


def compute_max_withdraw(
    account: Account,
    banks: Mapping[str, Bank],
    oracle_prices: Mapping[str, OraclePrice],
    bank_address: str,
    volatility_factor: Decimal = ONE,
    emode_pair: EmodePair | None = None,
    use_cache: bool = False,
) -> Decimal:
    """Largest amount of *bank_address* the account can withdraw.

    Isolated and zero-weight banks are blocked entirely while the account is
    at its Initial limit with debt, even though the withdrawal itself would
    not change health; the on-chain check only looks at the end state.
    """
    effective_banks = apply_emode_pair(banks, emode_pair) if emode_pair else banks
    bank, oracle_price = _lookup(effective_banks, oracle_prices, bank_address)

    init_weight = get_asset_weight(bank, MarginRequirementType.INITIAL, oracle_price)
    maint_weight = get_asset_weight(bank, MarginRequirementType.MAINTENANCE, oracle_price)

    active = get_active_balances(account.balances)
    balance = get_balance(bank_address, active)

    cached = use_cache and emode_pair is None

    def components(margin: MarginRequirementType) -> HealthComponents:
        if cached:
            return compute_health_components_from_cache(account, margin)
        return compute_health_components(active, margin, effective_banks, oracle_prices)

    initial = components(MarginRequirementType.INITIAL)
    free_collateral = max(initial.health, ZERO)
    liabilities_init = initial.liabilities

    entire_balance = compute_quantity_ui(balance, bank).assets
    init_collateral_for_bank = compute_asset_usd_value(
        bank,
        oracle_price,
        balance.asset_shares,
        MarginRequirementType.INITIAL,
        PriceBias.LOWEST,
    )

    # isolated bank, or collateral bank with both weights at zero
    if bank.config.risk_tier is RiskTier.ISOLATED or (init_weight == 0 and maint_weight == 0):
        if free_collateral == 0 and liabilities_init != 0:
            return ZERO
        return entire_balance

    price_lowest = get_price(oracle_price, PriceBias.LOWEST, True)

    # collateral bank being retired
    if init_weight == 0:
        if liabilities_init == 0:
            return entire_balance
        if free_collateral == 0:
            return ZERO
        maint = components(MarginRequirementType.MAINTENANCE)
        withdrawable = max(_safe_div(maint.health, price_lowest * maint_weight), ZERO)
        return min(withdrawable, entire_balance)

    if liabilities_init == 0 or init_collateral_for_bank <= free_collateral:
        return entire_balance

    untied = free_collateral * volatility_factor
    return max(_safe_div(untied, price_lowest * init_weight), ZERO)
