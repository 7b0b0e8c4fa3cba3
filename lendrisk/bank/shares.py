"""Share <-> quantity conversions.

quantity = shares * share_value. Share values only grow with accrued
interest; a zero share value converts any quantity to zero shares.
"""
from __future__ import annotations

from decimal import Decimal

from ..models import ZERO, Bank


def get_total_asset_quantity(bank: Bank) -> Decimal:
    return bank.total_asset_shares * bank.asset_share_value


def get_total_liability_quantity(bank: Bank) -> Decimal:
    return bank.total_liability_shares * bank.liability_share_value


def get_asset_quantity(bank: Bank, asset_shares: Decimal) -> Decimal:
    return asset_shares * bank.asset_share_value


def get_liability_quantity(bank: Bank, liability_shares: Decimal) -> Decimal:
    return liability_shares * bank.liability_share_value


def get_asset_shares(bank: Bank, asset_quantity: Decimal) -> Decimal:
    if bank.asset_share_value == 0:
        return ZERO
    return asset_quantity / bank.asset_share_value


def get_liability_shares(bank: Bank, liability_quantity: Decimal) -> Decimal:
    if bank.liability_share_value == 0:
        return ZERO
    return liability_quantity / bank.liability_share_value
