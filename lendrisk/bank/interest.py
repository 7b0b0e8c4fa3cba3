"""Interest-rate model and remaining capacity for a bank."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..models import ONE, ZERO, Bank
from .shares import get_total_asset_quantity, get_total_liability_quantity

HOURS_PER_YEAR = 8760


@dataclass(frozen=True)
class InterestRates:
    lending_rate: Decimal
    borrowing_rate: Decimal


@dataclass(frozen=True)
class RemainingCapacity:
    deposit_capacity: Decimal
    borrow_capacity: Decimal


def compute_utilization_rate(bank: Bank) -> Decimal:
    """Borrowed quantity over deposited quantity; zero for an empty bank."""
    assets = get_total_asset_quantity(bank)
    if assets == 0:
        return ZERO
    return get_total_liability_quantity(bank) / assets


def compute_base_interest_rate(bank: Bank) -> Decimal:
    """Piecewise-linear rate: rises to the plateau at optimal utilization, then to the max."""
    cfg = bank.config.interest_rate_config
    utilization = compute_utilization_rate(bank)
    optimal = cfg.optimal_utilization_rate
    plateau = cfg.plateau_interest_rate

    if utilization <= optimal:
        if optimal == 0:
            return plateau
        return utilization / optimal * plateau

    if optimal >= 1:
        return cfg.max_interest_rate
    return (utilization - optimal) / (ONE - optimal) * (cfg.max_interest_rate - plateau) + plateau


def compute_interest_rates(bank: Bank) -> InterestRates:
    """Annual lending and borrowing rates, fees included on the borrow side."""
    cfg = bank.config.interest_rate_config
    base_rate = compute_base_interest_rate(bank)
    utilization = compute_utilization_rate(bank)

    lending_rate = base_rate * utilization
    borrowing_rate = (
        base_rate * (ONE + cfg.insurance_ir_fee + cfg.protocol_ir_fee)
        + cfg.insurance_fee_fixed_apr
        + cfg.protocol_fixed_fee_apr
    )
    return InterestRates(lending_rate=lending_rate, borrowing_rate=borrowing_rate)


def compute_remaining_capacity(bank: Bank) -> RemainingCapacity:
    """Native-unit headroom under the deposit and borrow limits."""
    total_assets = get_total_asset_quantity(bank)
    total_liabilities = get_total_liability_quantity(bank)

    deposit_capacity = max(bank.config.deposit_limit - total_assets, ZERO)
    borrow_capacity = max(
        min(bank.config.borrow_limit - total_liabilities, total_assets - total_liabilities),
        ZERO,
    )
    return RemainingCapacity(deposit_capacity=deposit_capacity, borrow_capacity=borrow_capacity)


def apr_to_apy(apr: Decimal, compounding_frequency: int = HOURS_PER_YEAR) -> Decimal:
    return (ONE + apr / compounding_frequency) ** compounding_frequency - ONE
