"""Unit tests for the max-borrow / max-withdraw solvers."""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from lendrisk.account.health import refresh_health_cache
from lendrisk.account.max_amounts import (
    apply_emode_pair,
    compute_max_borrow,
    compute_max_withdraw,
    has_isolated_conflict,
)
from lendrisk.exceptions import BankNotFoundError, PriceNotFoundError
from lendrisk.models import (
    Account,
    Balance,
    Bank,
    EmodePair,
    OraclePrice,
    RiskTier,
    pad_balances,
)
from lendrisk.oracles.pricing import build_price_with_confidence

ISO_BANK = "IsoBank111111111111111111111111111111111111"
USDT_BANK = "UsDTBank11111111111111111111111111111111111"


@pytest.fixture()
def iso_bank(usdc_bank: Bank) -> Bank:
    return replace(
        usdc_bank,
        address=ISO_BANK,
        token_symbol="ISO",
        config=replace(
            usdc_bank.config,
            risk_tier=RiskTier.ISOLATED,
            asset_weight_init=Decimal(0),
            asset_weight_maint=Decimal(0),
        ),
    )


@pytest.fixture()
def all_banks(banks: dict[str, Bank], iso_bank: Bank, usdc_bank: Bank) -> dict[str, Bank]:
    return {**banks, ISO_BANK: iso_bank, USDT_BANK: replace(usdc_bank, address=USDT_BANK)}


@pytest.fixture()
def all_prices(prices: dict[str, OraclePrice], usdc_price: OraclePrice) -> dict[str, OraclePrice]:
    return {**prices, ISO_BANK: usdc_price, USDT_BANK: usdc_price}


def _account(*balances: Balance) -> Account:
    return Account(address="acct", authority="auth", balances=pad_balances(list(balances)))


def _asset(bank: str, amount: int, decimals: int) -> Balance:
    return Balance(active=True, bank_address=bank, asset_shares=Decimal(amount * 10**decimals))


def _debt(bank: str, amount: int, decimals: int) -> Balance:
    return Balance(
        active=True, bank_address=bank, liability_shares=Decimal(amount * 10**decimals)
    )


class TestMaxBorrow:
    def test_sol_collateral_usdc_borrow_scenario(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        usdc_bank: Bank,
    ) -> None:
        max_borrow = compute_max_borrow(sol_depositor, banks, prices, usdc_bank.address)
        assert Decimal(1000) < max_borrow < Decimal(1200)
        # 10 SOL * 148.5 * 0.75 over the $1.01 upper bound
        assert max_borrow == pytest.approx(Decimal("1113.75") / Decimal("1.01"))

    def test_borrow_against_same_bank(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
    ) -> None:
        assert compute_max_borrow(sol_depositor, banks, prices, sol_bank.address) == Decimal(10)

    def test_volatility_factor_scales_free_collateral(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        usdc_bank: Bank,
    ) -> None:
        max_borrow = compute_max_borrow(
            sol_depositor, banks, prices, usdc_bank.address, volatility_factor=Decimal("0.5")
        )
        assert max_borrow == pytest.approx(Decimal("556.875") / Decimal("1.01"))

    def test_never_negative_when_underwater(
        self,
        levered_account: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
        usdc_bank: Bank,
    ) -> None:
        crashed = dict(prices)
        record = build_price_with_confidence(Decimal(20), Decimal("0.2"))
        crashed[sol_bank.address] = OraclePrice(record, record)
        assert compute_max_borrow(levered_account, banks, crashed, usdc_bank.address) == 0
        assert compute_max_borrow(levered_account, banks, crashed, sol_bank.address) >= 0

    def test_isolated_borrow_with_other_debt_is_zero(
        self,
        levered_account: Account,
        all_banks: dict[str, Bank],
        all_prices: dict[str, OraclePrice],
    ) -> None:
        assert compute_max_borrow(levered_account, all_banks, all_prices, ISO_BANK) == 0

    def test_other_borrow_with_isolated_debt_is_zero(
        self,
        all_banks: dict[str, Bank],
        all_prices: dict[str, OraclePrice],
        sol_bank: Bank,
        usdc_bank: Bank,
    ) -> None:
        account = _account(_asset(sol_bank.address, 20, 9), _debt(ISO_BANK, 100, 6))
        assert has_isolated_conflict(account, all_banks, usdc_bank)
        assert compute_max_borrow(account, all_banks, all_prices, usdc_bank.address) == 0
        # more of the same isolated debt is allowed
        assert compute_max_borrow(account, all_banks, all_prices, ISO_BANK) > 0

    def test_emode_pair_raises_borrow_power(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
        usdc_bank: Bank,
    ) -> None:
        tagged = {**banks, sol_bank.address: replace(sol_bank, emode_tag=1)}
        pair = EmodePair(
            collateral_bank_tags=(1,),
            asset_weight_init=Decimal("0.9"),
            asset_weight_maint=Decimal("0.95"),
        )
        effective = apply_emode_pair(tagged, pair)
        assert effective[sol_bank.address].config.asset_weight_init == Decimal("0.9")
        assert effective[usdc_bank.address] is tagged[usdc_bank.address]

        max_borrow = compute_max_borrow(
            sol_depositor, tagged, prices, usdc_bank.address, emode_pair=pair
        )
        assert max_borrow == pytest.approx(Decimal("1336.5") / Decimal("1.01"))

    def test_cached_path_matches_computed(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        usdc_bank: Bank,
    ) -> None:
        account = refresh_health_cache(sol_depositor, banks, prices)
        cached = compute_max_borrow(account, banks, prices, usdc_bank.address, use_cache=True)
        computed = compute_max_borrow(account, banks, prices, usdc_bank.address)
        assert cached == computed

    def test_unknown_bank_raises(
        self, sol_depositor: Account, banks: dict[str, Bank], prices: dict[str, OraclePrice]
    ) -> None:
        with pytest.raises(BankNotFoundError, match="Bank missing not found"):
            compute_max_borrow(sol_depositor, banks, prices, "missing")

    def test_missing_price_raises(
        self, sol_depositor: Account, banks: dict[str, Bank], usdc_bank: Bank
    ) -> None:
        with pytest.raises(PriceNotFoundError):
            compute_max_borrow(sol_depositor, banks, {}, usdc_bank.address)


class TestMaxWithdraw:
    def test_withdraw_with_debt_scenario(
        self,
        levered_account: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
    ) -> None:
        max_withdraw = compute_max_withdraw(levered_account, banks, prices, sol_bank.address)
        assert Decimal(9) < max_withdraw < Decimal(20)
        # 1217.5 of free collateral at 148.5 * 0.75 per SOL
        assert max_withdraw == pytest.approx(Decimal("1217.5") / Decimal("111.375"))

    def test_no_debt_withdraws_everything(
        self,
        sol_depositor: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
    ) -> None:
        assert compute_max_withdraw(sol_depositor, banks, prices, sol_bank.address) == 10

    def test_nothing_deposited(
        self,
        levered_account: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        usdc_bank: Bank,
    ) -> None:
        assert compute_max_withdraw(levered_account, banks, prices, usdc_bank.address) == 0

    def test_isolated_blocked_at_limit_with_debt(
        self,
        all_banks: dict[str, Bank],
        all_prices: dict[str, OraclePrice],
        sol_bank: Bank,
        usdc_bank: Bank,
    ) -> None:
        account = _account(
            _asset(sol_bank.address, 10, 9),
            _asset(ISO_BANK, 100, 6),
            _debt(usdc_bank.address, 2000, 6),
        )
        assert compute_max_withdraw(account, all_banks, all_prices, ISO_BANK) == 0

    def test_isolated_free_without_debt(
        self,
        all_banks: dict[str, Bank],
        all_prices: dict[str, OraclePrice],
        sol_bank: Bank,
    ) -> None:
        account = _account(_asset(sol_bank.address, 10, 9), _asset(ISO_BANK, 100, 6))
        assert compute_max_withdraw(account, all_banks, all_prices, ISO_BANK) == 100

    def test_retiring_bank(
        self,
        all_banks: dict[str, Bank],
        all_prices: dict[str, OraclePrice],
        sol_bank: Bank,
        usdc_bank: Bank,
    ) -> None:
        retiring = replace(
            sol_bank, config=replace(sol_bank.config, asset_weight_init=Decimal(0))
        )
        bank_map = {**all_banks, sol_bank.address: retiring}

        healthy = _account(
            _asset(sol_bank.address, 5, 9),
            _asset(usdc_bank.address, 2000, 6),
            _debt(USDT_BANK, 1700, 6),
        )
        at_limit = _account(_asset(sol_bank.address, 5, 9), _debt(USDT_BANK, 100, 6))
        no_debt = _account(_asset(sol_bank.address, 5, 9))

        assert compute_max_withdraw(healthy, bank_map, all_prices, sol_bank.address) == 5
        assert compute_max_withdraw(at_limit, bank_map, all_prices, sol_bank.address) == 0
        assert compute_max_withdraw(no_debt, bank_map, all_prices, sol_bank.address) == 5

    def test_cached_path_matches_computed(
        self,
        levered_account: Account,
        banks: dict[str, Bank],
        prices: dict[str, OraclePrice],
        sol_bank: Bank,
    ) -> None:
        account = refresh_health_cache(levered_account, banks, prices)
        cached = compute_max_withdraw(account, banks, prices, sol_bank.address, use_cache=True)
        computed = compute_max_withdraw(account, banks, prices, sol_bank.address)
        assert cached == computed
