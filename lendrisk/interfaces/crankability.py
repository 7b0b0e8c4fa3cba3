"""Crankability protocol: can a pull feed be refreshed right now."""
from typing import Mapping, Protocol, Sequence

from ..models import Bank, CrankabilityResult, OraclePrice


class CrankabilityChecker(Protocol):
    """Batched check keyed by oracle key; failures must report uncrankable."""

    async def check_crankability(
        self, banks: Sequence[Bank], oracle_prices: Mapping[str, OraclePrice]
    ) -> dict[str, CrankabilityResult]: ...
