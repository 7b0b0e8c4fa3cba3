"""Oracle service: wires configured price providers, crossbar and the crank planner."""
from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Sequence

from ..account.max_amounts import compute_max_borrow, compute_max_withdraw
from ..account.projection import PendingInstruction
from ..config import AppConfig, load_config
from ..logging_setup import configure_logging
from ..models import Account, Bank, EmodePair, OraclePrice
from ..oracles.aggregator import OraclePriceMaps, resolve_oracle_prices
from ..oracles.crankability import CrossbarCrankabilityChecker
from ..oracles.fallback import FallbackPriceSource
from ..oracles.pyth import PythOracle
from ..oracles.switchboard import SwitchboardOracle
from .smart_crank import SmartCrankResult, plan_oracle_crank

logger = logging.getLogger(__name__)


class OracleService:
    """Bank prices, max amounts and crank plans from one :class:`AppConfig`."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        fallback = (
            FallbackPriceSource(config.fallback_prices)
            if config.fallback_prices.enabled
            else None
        )
        self.pyth = PythOracle(config.pyth, config.risk)
        self.switchboard = SwitchboardOracle(config.switchboard, fallback, config.risk)
        self.checker = CrossbarCrankabilityChecker(config.crank, feed_source=self.switchboard)

    @classmethod
    def from_config_file(cls, config_path: str | Path | None = None) -> OracleService:
        """Load config.yaml, apply its log level and build the service."""
        config = load_config(config_path)
        configure_logging(config.log_level)
        return cls(config)

    async def resolve_prices(self, banks: Sequence[Bank]) -> OraclePriceMaps:
        prices = await resolve_oracle_prices(
            banks,
            self.pyth,
            self.switchboard,
            isolated_fetch_prices=self.config.isolated_banks.fetch_prices,
            isolated_static_prices=self.config.isolated_banks.static_prices,
        )
        logger.info("Resolved prices for %d banks", len(prices.by_bank))
        return prices

    def max_borrow(
        self,
        account: Account,
        banks: Mapping[str, Bank],
        oracle_prices: Mapping[str, OraclePrice],
        bank_address: str,
        emode_pair: EmodePair | None = None,
    ) -> Decimal:
        """:func:`compute_max_borrow` at the configured volatility factor."""
        return compute_max_borrow(
            account,
            banks,
            oracle_prices,
            bank_address,
            volatility_factor=self.config.risk.volatility_factor,
            emode_pair=emode_pair,
        )

    def max_withdraw(
        self,
        account: Account,
        banks: Mapping[str, Bank],
        oracle_prices: Mapping[str, OraclePrice],
        bank_address: str,
        emode_pair: EmodePair | None = None,
    ) -> Decimal:
        return compute_max_withdraw(
            account,
            banks,
            oracle_prices,
            bank_address,
            volatility_factor=self.config.risk.volatility_factor,
            emode_pair=emode_pair,
        )

    async def plan_crank(
        self,
        account: Account,
        banks: Mapping[str, Bank],
        oracle_prices: Mapping[str, OraclePrice],
        instructions: Sequence[PendingInstruction],
        multipliers: Mapping[str, Decimal] | None = None,
    ) -> SmartCrankResult:
        max_combination_size = self.config.crank.max_combination_size
        if max_combination_size is None:
            max_combination_size = self.config.risk.max_balances
        return await plan_oracle_crank(
            account,
            banks,
            oracle_prices,
            instructions,
            self.checker,
            multipliers=multipliers,
            max_combination_size=max_combination_size,
            timeout=self.config.crank.solver_timeout,
        )
