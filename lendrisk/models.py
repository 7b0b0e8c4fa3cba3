"""Data models: all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum

DEFAULT_BANK_ADDRESS = "11111111111111111111111111111111"
ZERO_ORACLE_KEY = "DMhGWtLAKE5d56WdyHQxqeFncwUeqMEnuC2RvvZfbuur"
MAX_BALANCES = 16

ZERO = Decimal(0)
ONE = Decimal(1)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MarginRequirementType(Enum):
    INITIAL = "initial"
    MAINTENANCE = "maintenance"
    EQUITY = "equity"


class PriceBias(Enum):
    LOWEST = "lowest"
    NONE = "none"
    HIGHEST = "highest"


class RiskTier(Enum):
    COLLATERAL = "collateral"
    ISOLATED = "isolated"


class OracleSetup(Enum):
    NONE = "none"
    PYTH_LEGACY = "pyth_legacy"
    SWITCHBOARD_V2 = "switchboard_v2"
    PYTH_PUSH_ORACLE = "pyth_push_oracle"
    SWITCHBOARD_PULL = "switchboard_pull"
    STAKED_WITH_PYTH_PUSH = "staked_with_pyth_push"
    KAMINO_PYTH_PUSH = "kamino_pyth_push"
    KAMINO_SWITCHBOARD_PULL = "kamino_switchboard_pull"
    FIXED = "fixed"
    DRIFT_PYTH_PULL = "drift_pyth_pull"
    DRIFT_SWITCHBOARD_PULL = "drift_switchboard_pull"
    SOLEND_PYTH_PULL = "solend_pyth_pull"
    SOLEND_SWITCHBOARD_PULL = "solend_switchboard_pull"


# Pull feeds that must be refreshed on-chain right before use.
SWITCHBOARD_PULL_SETUPS = frozenset(
    {
        OracleSetup.SWITCHBOARD_PULL,
        OracleSetup.KAMINO_SWITCHBOARD_PULL,
        OracleSetup.DRIFT_SWITCHBOARD_PULL,
        OracleSetup.SOLEND_SWITCHBOARD_PULL,
    }
)


class HealthCacheStatus(Enum):
    UNSET = "unset"
    COMPUTED = "computed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceWithConfidence:
    price: Decimal
    confidence: Decimal
    lowest_price: Decimal
    highest_price: Decimal


@dataclass(frozen=True)
class SwitchboardFeedData:
    """Summary of a Switchboard pull-feed account."""

    queue: str
    feed_hash: str
    max_variance: str
    min_responses: int
    raw_price: str
    stdev: str


@dataclass(frozen=True)
class OraclePrice:
    """Spot (realtime) and time-weighted price records for one bank."""

    price_realtime: PriceWithConfidence
    price_weighted: PriceWithConfidence
    timestamp: Decimal = ZERO
    switchboard_data: SwitchboardFeedData | None = None


@dataclass(frozen=True)
class CrankabilityResult:
    is_crankable: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Banks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InterestRateConfig:
    optimal_utilization_rate: Decimal = Decimal("0.8")
    plateau_interest_rate: Decimal = Decimal("0.1")
    max_interest_rate: Decimal = Decimal("3")
    insurance_fee_fixed_apr: Decimal = ZERO
    insurance_ir_fee: Decimal = ZERO
    protocol_fixed_fee_apr: Decimal = ZERO
    protocol_ir_fee: Decimal = ZERO


@dataclass(frozen=True)
class EmodeWeights:
    asset_weight_init: Decimal
    asset_weight_maint: Decimal


@dataclass(frozen=True)
class EmodePair:
    """Active emode pairing: weights granted to banks carrying one of the tags."""

    collateral_bank_tags: tuple[int, ...]
    asset_weight_init: Decimal
    asset_weight_maint: Decimal


@dataclass(frozen=True)
class BankConfig:
    asset_weight_init: Decimal
    asset_weight_maint: Decimal
    liability_weight_init: Decimal
    liability_weight_maint: Decimal
    risk_tier: RiskTier = RiskTier.COLLATERAL
    oracle_setup: OracleSetup = OracleSetup.PYTH_PUSH_ORACLE
    oracle_keys: tuple[str, ...] = ()
    total_asset_value_init_limit: Decimal = ZERO
    fixed_price: Decimal = ZERO
    deposit_limit: Decimal = ZERO
    borrow_limit: Decimal = ZERO
    interest_rate_config: InterestRateConfig = field(default_factory=InterestRateConfig)
    oracle_max_age: int = 60


@dataclass(frozen=True)
class Bank:
    """A lending pool for one token."""

    address: str
    mint: str
    mint_decimals: int
    config: BankConfig
    total_asset_shares: Decimal = ZERO
    total_liability_shares: Decimal = ZERO
    asset_share_value: Decimal = ONE
    liability_share_value: Decimal = ONE
    emissions_rate: Decimal = ZERO
    emissions_remaining: Decimal = ZERO
    emissions_active_lending: bool = False
    emissions_active_borrowing: bool = False
    emode_tag: int | None = None
    token_symbol: str = ""

    @property
    def oracle_key(self) -> str:
        return self.config.oracle_keys[0] if self.config.oracle_keys else DEFAULT_BANK_ADDRESS

    def with_emode_weights(self, weights: EmodeWeights) -> Bank:
        """Copy of the bank with asset weights raised (never lowered) to *weights*."""
        config = replace(
            self.config,
            asset_weight_init=max(self.config.asset_weight_init, weights.asset_weight_init),
            asset_weight_maint=max(self.config.asset_weight_maint, weights.asset_weight_maint),
        )
        return replace(self, config=config)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Balance:
    """One position slot within an account."""

    active: bool
    bank_address: str
    asset_shares: Decimal = ZERO
    liability_shares: Decimal = ZERO
    emissions_outstanding: Decimal = ZERO
    last_update: int = 0

    @classmethod
    def empty(cls, bank_address: str = DEFAULT_BANK_ADDRESS) -> Balance:
        return cls(active=False, bank_address=bank_address)


@dataclass(frozen=True)
class HealthCache:
    asset_value: Decimal = ZERO
    liability_value: Decimal = ZERO
    asset_value_maint: Decimal = ZERO
    liability_value_maint: Decimal = ZERO
    asset_value_equity: Decimal = ZERO
    liability_value_equity: Decimal = ZERO
    timestamp: int = 0
    status: HealthCacheStatus = HealthCacheStatus.UNSET


@dataclass(frozen=True)
class Account:
    address: str
    authority: str
    balances: tuple[Balance, ...] = ()
    health_cache: HealthCache = field(default_factory=HealthCache)

    @property
    def active_balances(self) -> tuple[Balance, ...]:
        return tuple(b for b in self.balances if b.active)

    def with_health_cache(self, health_cache: HealthCache) -> Account:
        return replace(self, health_cache=health_cache)


def pad_balances(
    balances: list[Balance] | tuple[Balance, ...], size: int = MAX_BALANCES
) -> tuple[Balance, ...]:
    """Fill the slot array up to *size* with inactive balances."""
    padded = list(balances)
    if len(padded) > size:
        raise ValueError(f"An account holds at most {size} balances, got {len(padded)}")
    padded.extend(Balance.empty() for _ in range(size - len(padded)))
    return tuple(padded)


def shorten_address(address: str) -> str:
    if len(address) > 12:
        return f"{address[:4]}...{address[-4:]}"
    return address
