"""Oracle price providers, crossbar crankability and price aggregation."""
from .aggregator import OraclePriceMaps, classify_banks, resolve_oracle_prices
from .crankability import CrossbarCrankabilityChecker, partition_banks_by_crankability
from .fallback import FallbackPriceSource
from .pyth import PythOracle
from .switchboard import SwitchboardOracle

__all__ = [
    "CrossbarCrankabilityChecker",
    "FallbackPriceSource",
    "OraclePriceMaps",
    "PythOracle",
    "SwitchboardOracle",
    "classify_banks",
    "partition_banks_by_crankability",
    "resolve_oracle_prices",
]
