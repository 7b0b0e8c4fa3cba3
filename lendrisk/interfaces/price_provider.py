"""Price provider protocol: one oracle family."""
from typing import Protocol, Sequence

from ..models import Bank, OraclePrice


class BankPriceProvider(Protocol):
    """Resolves prices for the banks it supports, keyed by bank address."""

    async def fetch_bank_prices(self, banks: Sequence[Bank]) -> dict[str, OraclePrice]: ...
