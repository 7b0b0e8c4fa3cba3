"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from lendrisk.config import (
    AppConfig,
    CrankConfig,
    FallbackPriceConfig,
    PythConfig,
    SwitchboardConfig,
)
from lendrisk.models import (
    Account,
    Balance,
    Bank,
    BankConfig,
    OraclePrice,
    pad_balances,
)
from lendrisk.oracles.pricing import build_price_with_confidence

SOL_BANK = "SoLBank1111111111111111111111111111111111111"
SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_ORACLE = "SoLOracLe11111111111111111111111111111111111"
USDC_BANK = "UsDCBank111111111111111111111111111111111111"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_ORACLE = "UsDCOracLe1111111111111111111111111111111111"

LAMPORTS_PER_SOL = 10**9
USDC_UNIT = 10**6


def _price(price: str, confidence: str) -> OraclePrice:
    record = build_price_with_confidence(Decimal(price), Decimal(confidence))
    return OraclePrice(price_realtime=record, price_weighted=record)


# ---------------------------------------------------------------------------
# Bank fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sol_bank() -> Bank:
    return Bank(
        address=SOL_BANK,
        mint=SOL_MINT,
        mint_decimals=9,
        config=BankConfig(
            asset_weight_init=Decimal("0.75"),
            asset_weight_maint=Decimal("0.85"),
            liability_weight_init=Decimal("1.25"),
            liability_weight_maint=Decimal("1.15"),
            oracle_keys=(SOL_ORACLE,),
        ),
        total_asset_shares=Decimal(1_000_000 * LAMPORTS_PER_SOL),
        total_liability_shares=Decimal(400_000 * LAMPORTS_PER_SOL),
        token_symbol="SOL",
    )


@pytest.fixture()
def usdc_bank() -> Bank:
    return Bank(
        address=USDC_BANK,
        mint=USDC_MINT,
        mint_decimals=6,
        config=BankConfig(
            asset_weight_init=Decimal("0.9"),
            asset_weight_maint=Decimal("0.95"),
            liability_weight_init=Decimal("1"),
            liability_weight_maint=Decimal("1"),
            oracle_keys=(USDC_ORACLE,),
        ),
        total_asset_shares=Decimal(50_000_000 * USDC_UNIT),
        total_liability_shares=Decimal(40_000_000 * USDC_UNIT),
        token_symbol="USDC",
    )


@pytest.fixture()
def banks(sol_bank: Bank, usdc_bank: Bank) -> dict[str, Bank]:
    return {sol_bank.address: sol_bank, usdc_bank.address: usdc_bank}


# ---------------------------------------------------------------------------
# Price fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sol_price() -> OraclePrice:
    # $150 with a 1% confidence band
    return _price("150", "1.5")


@pytest.fixture()
def usdc_price() -> OraclePrice:
    return _price("1", "0.01")


@pytest.fixture()
def prices(sol_price: OraclePrice, usdc_price: OraclePrice) -> dict[str, OraclePrice]:
    return {SOL_BANK: sol_price, USDC_BANK: usdc_price}


# ---------------------------------------------------------------------------
# Account fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sol_depositor() -> Account:
    """10 SOL deposited, no debt."""
    return Account(
        address="AccountSoLDepositor11111111111111111111111111",
        authority="Authority1111111111111111111111111111111111",
        balances=pad_balances(
            [
                Balance(
                    active=True,
                    bank_address=SOL_BANK,
                    asset_shares=Decimal(10 * LAMPORTS_PER_SOL),
                )
            ]
        ),
    )


@pytest.fixture()
def levered_account() -> Account:
    """20 SOL deposited, 1000 USDC borrowed."""
    return Account(
        address="AccountLevered11111111111111111111111111111111",
        authority="Authority1111111111111111111111111111111111",
        balances=pad_balances(
            [
                Balance(
                    active=True,
                    bank_address=SOL_BANK,
                    asset_shares=Decimal(20 * LAMPORTS_PER_SOL),
                ),
                Balance(
                    active=True,
                    bank_address=USDC_BANK,
                    liability_shares=Decimal(1000 * USDC_UNIT),
                ),
            ]
        ),
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.example.com/v2/updates/price/latest",
        feeds={SOL_ORACLE: "0xAAA111", USDC_ORACLE: "bbb222"},
    )


@pytest.fixture()
def sample_switchboard_config() -> SwitchboardConfig:
    return SwitchboardConfig(
        feed_data_url="https://feeds.example.com/swb",
        crossbar_url="https://crossbar.example.com",
        chunk_size=2,
    )


@pytest.fixture()
def sample_fallback_config() -> FallbackPriceConfig:
    return FallbackPriceConfig(enabled=True, endpoint="https://prices.example.com/multi")


@pytest.fixture()
def sample_app_config(
    sample_pyth_config: PythConfig,
    sample_switchboard_config: SwitchboardConfig,
    sample_fallback_config: FallbackPriceConfig,
) -> AppConfig:
    return AppConfig(
        pyth=sample_pyth_config,
        switchboard=sample_switchboard_config,
        fallback_prices=sample_fallback_config,
        crank=CrankConfig(crossbar_url="https://crossbar.example.com"),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    log_level: DEBUG
    risk:
      max_confidence_interval_ratio: 0.05
      pyth_conf_intervals: 2.12
      swb_conf_intervals: 1.96
      volatility_factor: 0.95
    pyth:
      hermes_url: "https://hermes.example.com"
      timeout: 5
      feeds:
        SoLOracLe11111111111111111111111111111111111: "0xaaa111"
      staked_coefficients:
        StakedBank111: 1.08
    switchboard:
      feed_data_url: "https://feeds.example.com/swb"
      crossbar_url: "https://crossbar.example.com"
      crossbar_fallback_url: "https://crossbar-backup.example.com"
      chunk_size: 3
    fallback_prices:
      enabled: true
      endpoint: "https://prices.example.com/multi"
    crank:
      crossbar_url: "https://crossbar.example.com"
      max_combination_size: 4
      solver_timeout: 2.5
    isolated_banks:
      fetch_prices: false
      static_prices:
        IsolatedBank111: 0.25
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
