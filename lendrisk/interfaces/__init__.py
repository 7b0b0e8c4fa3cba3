"""Protocol interfaces for the risk engine's external collaborators."""
from .crankability import CrankabilityChecker
from .price_provider import BankPriceProvider

__all__ = ["BankPriceProvider", "CrankabilityChecker"]
