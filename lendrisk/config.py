"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskConfig:
    max_confidence_interval_ratio: Decimal = Decimal("0.05")
    pyth_conf_intervals: Decimal = Decimal("2.12")
    swb_conf_intervals: Decimal = Decimal("1.96")
    max_balances: int = 16
    volatility_factor: Decimal = Decimal(1)


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    timeout: int = 10
    feeds: dict[str, str] = field(default_factory=dict)
    staked_coefficients: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class SwitchboardConfig:
    feed_data_url: str = ""
    feed_data_query_key: str = "feedKeys"
    crossbar_url: str = "https://crossbar.switchboard.xyz"
    crossbar_fallback_url: str = ""
    chunk_size: int = 5
    timeout: int = 8


@dataclass(frozen=True)
class FallbackPriceConfig:
    enabled: bool = False
    endpoint: str = ""
    query_key: str = "mintList"
    timeout: int = 8


@dataclass(frozen=True)
class CrankConfig:
    crossbar_url: str = "https://crossbar.switchboard.xyz"
    timeout: int = 8
    max_combination_size: int | None = None
    solver_timeout: float | None = None


@dataclass(frozen=True)
class IsolatedBanksConfig:
    fetch_prices: bool = False
    static_prices: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    risk: RiskConfig = field(default_factory=RiskConfig)
    pyth: PythConfig = field(default_factory=PythConfig)
    switchboard: SwitchboardConfig = field(default_factory=SwitchboardConfig)
    fallback_prices: FallbackPriceConfig = field(default_factory=FallbackPriceConfig)
    crank: CrankConfig = field(default_factory=CrankConfig)
    isolated_banks: IsolatedBanksConfig = field(default_factory=IsolatedBanksConfig)
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _decimal(value: Any) -> Decimal:
    # str() first so YAML floats keep their printed value
    return Decimal(str(value))


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    return RiskConfig(
        max_confidence_interval_ratio=_decimal(raw.get("max_confidence_interval_ratio", "0.05")),
        pyth_conf_intervals=_decimal(raw.get("pyth_conf_intervals", "2.12")),
        swb_conf_intervals=_decimal(raw.get("swb_conf_intervals", "1.96")),
        max_balances=int(raw.get("max_balances", 16)),
        volatility_factor=_decimal(raw.get("volatility_factor", 1)),
    )


def _build_pyth(raw: dict[str, Any]) -> PythConfig:
    return PythConfig(
        hermes_url=raw.get("hermes_url", PythConfig.hermes_url),
        timeout=int(raw.get("timeout", 10)),
        feeds=dict(raw.get("feeds", {})),
        staked_coefficients={
            bank: _decimal(coef) for bank, coef in raw.get("staked_coefficients", {}).items()
        },
    )


def _build_switchboard(raw: dict[str, Any]) -> SwitchboardConfig:
    return SwitchboardConfig(
        feed_data_url=raw.get("feed_data_url", ""),
        feed_data_query_key=raw.get("feed_data_query_key", "feedKeys"),
        crossbar_url=raw.get("crossbar_url", SwitchboardConfig.crossbar_url),
        crossbar_fallback_url=raw.get("crossbar_fallback_url", ""),
        chunk_size=int(raw.get("chunk_size", 5)),
        timeout=int(raw.get("timeout", 8)),
    )


def _build_fallback_prices(raw: dict[str, Any]) -> FallbackPriceConfig:
    return FallbackPriceConfig(
        enabled=bool(raw.get("enabled", False)),
        endpoint=raw.get("endpoint", ""),
        query_key=raw.get("query_key", "mintList"),
        timeout=int(raw.get("timeout", 8)),
    )


def _build_crank(raw: dict[str, Any]) -> CrankConfig:
    return CrankConfig(
        crossbar_url=raw.get("crossbar_url", CrankConfig.crossbar_url),
        timeout=int(raw.get("timeout", 8)),
        max_combination_size=_optional_int(raw.get("max_combination_size")),
        solver_timeout=_optional_float(raw.get("solver_timeout")),
    )


def _build_isolated_banks(raw: dict[str, Any]) -> IsolatedBanksConfig:
    return IsolatedBanksConfig(
        fetch_prices=bool(raw.get("fetch_prices", False)),
        static_prices={
            bank: _decimal(price) for bank, price in raw.get("static_prices", {}).items()
        },
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        risk=_build_risk(raw.get("risk", {})),
        pyth=_build_pyth(raw.get("pyth", {})),
        switchboard=_build_switchboard(raw.get("switchboard", {})),
        fallback_prices=_build_fallback_prices(raw.get("fallback_prices", {})),
        crank=_build_crank(raw.get("crank", {})),
        isolated_banks=_build_isolated_banks(raw.get("isolated_banks", {})),
        log_level=raw.get("log_level", "INFO"),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    risk = cfg.risk
    if not Decimal(0) < risk.max_confidence_interval_ratio <= Decimal(1):
        raise ValueError("risk.max_confidence_interval_ratio must be in (0, 1]")
    if risk.max_balances < 1:
        raise ValueError("risk.max_balances must be at least 1")
    if not Decimal(0) < risk.volatility_factor <= Decimal(1):
        raise ValueError("risk.volatility_factor must be in (0, 1]")

    for name, timeout in (
        ("pyth", cfg.pyth.timeout),
        ("switchboard", cfg.switchboard.timeout),
        ("fallback_prices", cfg.fallback_prices.timeout),
        ("crank", cfg.crank.timeout),
    ):
        if timeout <= 0:
            raise ValueError(f"{name}.timeout must be positive")

    if cfg.switchboard.chunk_size < 1:
        raise ValueError("switchboard.chunk_size must be at least 1")
    if cfg.fallback_prices.enabled and not cfg.fallback_prices.endpoint:
        raise ValueError("fallback_prices.endpoint is required when fallback pricing is enabled")
    if cfg.crank.max_combination_size is not None and cfg.crank.max_combination_size < 1:
        raise ValueError("crank.max_combination_size must be at least 1")
    if cfg.crank.solver_timeout is not None and cfg.crank.solver_timeout <= 0:
        raise ValueError("crank.solver_timeout must be positive")
