"""Conversion between decimal major-unit amounts and integer minor units.

Fee definitions carry rates as decimals in major units ($12.00). Invoices
store totals as integers in the currency's minor unit (1200 cents). This is
the only place where rounding happens.
"""

from decimal import ROUND_HALF_UP, Decimal

from babel.numbers import get_currency_precision

from core.errors import InvalidArgumentError


def minor_unit_precision(currency: str) -> int:
    """Number of decimal digits in the currency's minor unit (USD: 2, JPY: 0)."""
    if not currency or len(currency) != 3:
        raise InvalidArgumentError(f"Invalid currency code: {currency!r}")
    return get_currency_precision(currency.upper())


def minor_unit_factor(currency: str) -> Decimal:
    """Multiplier from major to minor units (USD: 100)."""
    return Decimal(10) ** minor_unit_precision(currency)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Round a major-unit decimal amount to integer minor units, half-up."""
    scaled = amount * minor_unit_factor(currency)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_minor_unit_price(rate: Decimal, currency: str) -> Decimal:
    """
    Express a per-unit rate in minor units without rounding.

    $0.05 per unit becomes Decimal("5") cents; sub-cent rates stay exact.
    """
    scaled = rate * minor_unit_factor(currency)
    if scaled == scaled.to_integral_value():
        return scaled.quantize(Decimal(1))
    return scaled.normalize()
