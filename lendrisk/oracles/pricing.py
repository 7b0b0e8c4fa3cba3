"""Builders for oracle price records."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from ..models import ZERO, OraclePrice, PriceWithConfidence, SwitchboardFeedData

MAX_CONFIDENCE_INTERVAL_RATIO = Decimal("0.05")


def to_decimal(value: Any) -> Decimal | None:
    """Finite Decimal from a JSON number or string, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def cap_confidence_interval(
    price: Decimal, confidence: Decimal, max_ratio: Decimal = MAX_CONFIDENCE_INTERVAL_RATIO
) -> Decimal:
    """Confidence bounded by ``price * max_ratio``."""
    return min(confidence, price * max_ratio)


def build_price_with_confidence(
    price: Decimal, confidence: Decimal, max_ratio: Decimal = MAX_CONFIDENCE_INTERVAL_RATIO
) -> PriceWithConfidence:
    capped = cap_confidence_interval(price, confidence, max_ratio)
    return PriceWithConfidence(
        price=price,
        confidence=capped,
        lowest_price=price - capped,
        highest_price=price + capped,
    )


def flat_oracle_price(
    price: Decimal,
    timestamp: Decimal = ZERO,
    switchboard_data: SwitchboardFeedData | None = None,
) -> OraclePrice:
    """Zero-confidence record with identical spot and time-weighted values."""
    record = PriceWithConfidence(
        price=price, confidence=ZERO, lowest_price=price, highest_price=price
    )
    return OraclePrice(
        price_realtime=record,
        price_weighted=record,
        timestamp=timestamp,
        switchboard_data=switchboard_data,
    )


def zero_oracle_price(timestamp: Decimal = ZERO) -> OraclePrice:
    return flat_oracle_price(ZERO, timestamp)


def fixed_oracle_price(fixed_price: Decimal, timestamp: Decimal = ZERO) -> OraclePrice:
    return flat_oracle_price(fixed_price, timestamp)


def scale_price(
    record: PriceWithConfidence, coefficient: Decimal
) -> PriceWithConfidence:
    """Price and bounds multiplied by *coefficient*; confidence unchanged."""
    return PriceWithConfidence(
        price=record.price * coefficient,
        confidence=record.confidence,
        lowest_price=record.lowest_price * coefficient,
        highest_price=record.highest_price * coefficient,
    )


def median(values: Sequence[Decimal]) -> Decimal:
    if not values:
        raise ValueError("median() of an empty sequence")
    ordered = sorted(values)
    half = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[half]
    return (ordered[half - 1] + ordered[half]) / 2
