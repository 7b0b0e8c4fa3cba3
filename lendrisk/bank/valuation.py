"""Weights, USD values and leverage for a single bank.

Every margin-type decision (which weight, which price variant) goes through
``resolve_margin`` so the soft-limit and bias rules live in one place.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from ..models import (
    ONE,
    ZERO,
    Bank,
    BankConfig,
    EmodeWeights,
    MarginRequirementType,
    OraclePrice,
    PriceBias,
    PriceWithConfidence,
)
from .shares import get_asset_quantity, get_liability_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarginResolution:
    """How a margin requirement values a position."""

    weighted_price: bool
    unit_weight: bool


def resolve_margin(margin: MarginRequirementType) -> MarginResolution:
    """Initial margin reads the time-weighted price; Equity is unweighted."""
    return MarginResolution(
        weighted_price=margin is MarginRequirementType.INITIAL,
        unit_weight=margin is MarginRequirementType.EQUITY,
    )


def is_weighted_price(margin: MarginRequirementType) -> bool:
    return resolve_margin(margin).weighted_price


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


def get_price_with_confidence(oracle_price: OraclePrice, weighted: bool) -> PriceWithConfidence:
    return oracle_price.price_weighted if weighted else oracle_price.price_realtime


def get_price(
    oracle_price: OraclePrice,
    bias: PriceBias = PriceBias.NONE,
    weighted: bool = False,
) -> Decimal:
    price = get_price_with_confidence(oracle_price, weighted)
    if bias is PriceBias.LOWEST:
        return price.lowest_price
    if bias is PriceBias.HIGHEST:
        return price.highest_price
    return price.price


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


def get_asset_weight(
    bank: Bank,
    margin: MarginRequirementType,
    oracle_price: OraclePrice,
    multiplier: Decimal | None = None,
    emode_weights: EmodeWeights | None = None,
    ignore_soft_limits: bool = False,
) -> Decimal:
    """Asset weight for *margin*.

    Emode weights can only raise the configured weights. The Initial weight
    is scaled by ``limit / total_collateral_value`` once the bank's total
    collateral (Equity, lowest bias) exceeds ``total_asset_value_init_limit``.
    """
    if resolve_margin(margin).unit_weight:
        return ONE

    config = bank.config
    weight_init = config.asset_weight_init
    weight_maint = config.asset_weight_maint
    if emode_weights is not None:
        weight_init = max(emode_weights.asset_weight_init, weight_init)
        weight_maint = max(emode_weights.asset_weight_maint, weight_maint)

    if margin is MarginRequirementType.MAINTENANCE:
        return weight_maint

    if weight_init == 0:
        return ZERO

    limit = config.total_asset_value_init_limit
    if ignore_soft_limits or limit == 0:
        return weight_init

    total_collateral_value = compute_asset_usd_value(
        bank,
        oracle_price,
        bank.total_asset_shares,
        MarginRequirementType.EQUITY,
        PriceBias.LOWEST,
        multiplier=multiplier,
        emode_weights=emode_weights,
    )
    if total_collateral_value > limit:
        return limit / total_collateral_value * weight_init
    return weight_init


def get_liability_weight(config: BankConfig, margin: MarginRequirementType) -> Decimal:
    """Configured liability weight; emode never touches liabilities."""
    if resolve_margin(margin).unit_weight:
        return ONE
    if margin is MarginRequirementType.INITIAL:
        return config.liability_weight_init
    return config.liability_weight_maint


# ---------------------------------------------------------------------------
# USD values
# ---------------------------------------------------------------------------


def compute_usd_value(
    bank: Bank,
    oracle_price: OraclePrice,
    quantity: Decimal,
    bias: PriceBias,
    weighted: bool,
    weight: Decimal = ONE,
    scale_to_base: bool = True,
    multiplier: Decimal | None = None,
) -> Decimal:
    """quantity * multiplier * price * weight, scaled down by the mint decimals."""
    price = get_price(oracle_price, bias, weighted)
    value = quantity * (multiplier if multiplier is not None else ONE) * price * weight
    if scale_to_base:
        value = value / (Decimal(10) ** bank.mint_decimals)
    return value


def compute_asset_usd_value(
    bank: Bank,
    oracle_price: OraclePrice,
    asset_shares: Decimal,
    margin: MarginRequirementType,
    bias: PriceBias,
    multiplier: Decimal | None = None,
    emode_weights: EmodeWeights | None = None,
) -> Decimal:
    quantity = get_asset_quantity(bank, asset_shares)
    weight = get_asset_weight(
        bank, margin, oracle_price, multiplier=multiplier, emode_weights=emode_weights
    )
    return compute_usd_value(
        bank,
        oracle_price,
        quantity,
        bias,
        is_weighted_price(margin),
        weight=weight,
        multiplier=multiplier,
    )


def compute_liability_usd_value(
    bank: Bank,
    oracle_price: OraclePrice,
    liability_shares: Decimal,
    margin: MarginRequirementType,
    bias: PriceBias,
) -> Decimal:
    quantity = get_liability_quantity(bank, liability_shares)
    weight = get_liability_weight(bank.config, margin)
    return compute_usd_value(
        bank, oracle_price, quantity, bias, is_weighted_price(margin), weight=weight
    )


def compute_tvl(bank: Bank, oracle_price: OraclePrice) -> Decimal:
    """Neutral USD value of deposits minus borrows."""
    assets = compute_asset_usd_value(
        bank, oracle_price, bank.total_asset_shares, MarginRequirementType.EQUITY, PriceBias.NONE
    )
    liabilities = compute_liability_usd_value(
        bank,
        oracle_price,
        bank.total_liability_shares,
        MarginRequirementType.EQUITY,
        PriceBias.NONE,
    )
    return assets - liabilities


def compute_quantity_from_usd_value(
    usd_value: Decimal,
    oracle_price: OraclePrice,
    bias: PriceBias = PriceBias.NONE,
    weighted: bool = False,
) -> Decimal:
    """UI-unit quantity worth *usd_value*; zero when the price is zero."""
    price = get_price(oracle_price, bias, weighted)
    if price == 0:
        return ZERO
    return usd_value / price


# ---------------------------------------------------------------------------
# Leverage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoopingParams:
    total_deposit_amount: Decimal
    total_borrow_amount: Decimal


def _round_down(value: Decimal, decimals: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def compute_max_leverage(
    deposit_bank: Bank,
    borrow_bank: Bank,
    asset_weight_init: Decimal | None = None,
    liability_weight_init: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Return ``(max_leverage, ltv)`` where ``max_leverage = 1 / (1 - ltv)``."""
    aw = asset_weight_init or deposit_bank.config.asset_weight_init
    lw = liability_weight_init or borrow_bank.config.liability_weight_init
    ltv = aw / lw
    if ltv >= 1:
        raise ValueError(f"LTV {ltv} leaves no bound on leverage")
    return ONE / (ONE - ltv), ltv


def compute_looping_params(
    principal: Decimal,
    target_leverage: Decimal,
    deposit_bank: Bank,
    borrow_bank: Bank,
    deposit_price: OraclePrice,
    borrow_price: OraclePrice,
    asset_weight_init: Decimal | None = None,
    liability_weight_init: Decimal | None = None,
) -> LoopingParams:
    """Total deposit and borrow (UI units) needed to reach *target_leverage*.

    The target is clamped into ``[1, max_leverage]``.
    """
    max_leverage, _ = compute_max_leverage(
        deposit_bank, borrow_bank, asset_weight_init, liability_weight_init
    )

    leverage = target_leverage
    if target_leverage < 1:
        logger.warning("Target leverage %s < 1, clamping to 1", target_leverage)
        leverage = ONE
    elif target_leverage > max_leverage:
        logger.warning(
            "Target leverage %s > max leverage %s, clamping", target_leverage, max_leverage
        )
        leverage = max_leverage

    total_deposit = principal * leverage
    additional_deposit = total_deposit - principal
    total_borrow = (
        additional_deposit
        * deposit_price.price_weighted.lowest_price
        / borrow_price.price_weighted.highest_price
    )

    return LoopingParams(
        total_deposit_amount=_round_down(total_deposit, deposit_bank.mint_decimals),
        total_borrow_amount=_round_down(total_borrow, borrow_bank.mint_decimals),
    )
