"""
Decimal helpers for quantities, prices and currency values

All arithmetic stays in Decimal. Values are only rounded to currency
precision when a value (quantity x cost) leaves the ledger for display
or aggregation.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .config import settings

Number = Union[Decimal, int, str, float]

ZERO = Decimal("0")


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def to_decimal(value: Number) -> Decimal:
    """
    Convert a value to Decimal without binary float drift

    Floats go through str() so that 0.1 becomes Decimal('0.1').
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise TypeError("Boolean is not a numeric amount")
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid decimal value: {value!r}")
    else:
        raise TypeError(f"Cannot convert {type(value).__name__} to Decimal")

    if not result.is_finite():
        raise ValueError(f"Decimal value must be finite: {value!r}")
    return result


def quantize_quantity(value: Number) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.QUANTITY_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def quantize_price(value: Number) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.PRICE_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def quantize_wac(value: Number) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.WAC_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def round_money(value: Number) -> Decimal:
    """Round to currency precision (2 dp) for display and aggregation"""
    return to_decimal(value).quantize(_exponent(settings.CURRENCY_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def line_value(quantity: Number, unit_cost: Number) -> Decimal:
    """Value of a movement line: quantity x unit cost, at currency precision"""
    return round_money(to_decimal(quantity) * to_decimal(unit_cost))


def weighted_average_cost(
    on_hand: Number,
    wac: Number,
    quantity: Number,
    unit_price: Number
) -> Decimal:
    """
    Blend incoming stock into the existing average cost

        new_wac = (on_hand x wac + quantity x unit_price) / (on_hand + quantity)

    With nothing on hand the result is the incoming unit price.
    """
    on_hand = to_decimal(on_hand)
    wac = to_decimal(wac)
    quantity = to_decimal(quantity)
    unit_price = to_decimal(unit_price)

    if on_hand < 0:
        raise ValueError("on_hand cannot be negative")
    if wac < 0:
        raise ValueError("wac cannot be negative")
    if quantity <= 0:
        raise ValueError("quantity must be greater than zero")
    if unit_price < 0:
        raise ValueError("unit_price cannot be negative")

    new_quantity = on_hand + quantity
    if new_quantity <= 0:
        raise ValueError("Resulting quantity must be greater than zero")

    if on_hand == 0:
        return unit_price

    return (on_hand * wac + quantity * unit_price) / new_quantity
