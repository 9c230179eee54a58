"""
Price Variance Detector
Compares delivery prices against the period-locked reference price
"""
from decimal import Decimal
from typing import Optional

from stockledger.core.config import settings
from stockledger.core.exceptions import ValidationError
from stockledger.core.money import to_decimal
from stockledger.schemas.stock import VarianceDirection, VarianceRecord


def detect_variance(
    expected_price,
    actual_price,
    quantity,
    tolerance=None,
    **context
) -> Optional[VarianceRecord]:
    """
    Return a VarianceRecord when |actual - expected| exceeds the tolerance

    Tolerance is an absolute amount per unit, not a percentage.
    variance_value = quantity x (actual - expected); positive values are
    overcharges. Extra keyword arguments (location_id, item_id, ...) are
    copied onto the record.
    """
    expected = to_decimal(expected_price)
    actual = to_decimal(actual_price)
    qty = to_decimal(quantity)
    limit = to_decimal(settings.PRICE_VARIANCE_TOLERANCE if tolerance is None else tolerance)

    if limit < 0:
        raise ValidationError(f"Variance tolerance cannot be negative, got {limit}", tolerance=limit)

    diff = actual - expected
    if abs(diff) <= limit:
        return None

    return VarianceRecord(
        expected_price=expected,
        actual_price=actual,
        quantity=qty,
        variance_per_unit=diff,
        variance_value=diff * qty,
        direction=VarianceDirection.OVERCHARGE if diff > 0 else VarianceDirection.UNDERCHARGE,
        **context
    )


class PriceVarianceDetector:
    """Variance detection with a fixed tolerance"""

    def __init__(self, tolerance: Optional[Decimal] = None):
        self.tolerance = to_decimal(settings.PRICE_VARIANCE_TOLERANCE if tolerance is None else tolerance)
        if self.tolerance < 0:
            raise ValidationError(
                f"Variance tolerance cannot be negative, got {self.tolerance}",
                tolerance=self.tolerance
            )

    def detect_variance(self, expected_price, actual_price, quantity, **context) -> Optional[VarianceRecord]:
        return detect_variance(expected_price, actual_price, quantity, self.tolerance, **context)
