"""Exception hierarchy for the risk engine."""
from __future__ import annotations


class LendRiskError(Exception):
    """Base class for all risk-engine errors."""


class BankNotFoundError(LendRiskError, KeyError):
    """A balance or instruction references a bank missing from the registry."""

    def __init__(self, bank_address: str) -> None:
        super().__init__(f"Bank {bank_address} not found")
        self.bank_address = bank_address

    def __str__(self) -> str:
        return self.args[0]


class PriceNotFoundError(LendRiskError, KeyError):
    """No oracle price is available for a bank."""

    def __init__(self, bank_address: str) -> None:
        super().__init__(f"Price info for bank {bank_address} not found")
        self.bank_address = bank_address

    def __str__(self) -> str:
        return self.args[0]


class NoInactiveBalanceError(LendRiskError):
    """Opening a position needs a free slot and the account has none."""


class InvalidInstructionSequenceError(LendRiskError):
    """Repay or withdraw against a bank with no projected-active balance."""


class OracleFetchError(LendRiskError):
    """A price provider request failed or returned an unusable payload."""
