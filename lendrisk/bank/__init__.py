"""Bank pricing model: shares, weights, USD values and interest."""
from .shares import (
    get_asset_quantity,
    get_asset_shares,
    get_liability_quantity,
    get_liability_shares,
    get_total_asset_quantity,
    get_total_liability_quantity,
)
from .valuation import (
    compute_asset_usd_value,
    compute_liability_usd_value,
    compute_usd_value,
    get_asset_weight,
    get_liability_weight,
    get_price,
)

__all__ = [
    "compute_asset_usd_value",
    "compute_liability_usd_value",
    "compute_usd_value",
    "get_asset_quantity",
    "get_asset_shares",
    "get_asset_weight",
    "get_liability_quantity",
    "get_liability_shares",
    "get_liability_weight",
    "get_price",
    "get_total_asset_quantity",
    "get_total_liability_quantity",
]
