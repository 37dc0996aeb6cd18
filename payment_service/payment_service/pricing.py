"""Order totals in fixed-point currency arithmetic."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple

from .schemas import OrderItem

CENT = Decimal("0.01")
FREE_SHIPPING_THRESHOLD = Decimal("50")
FLAT_SHIPPING = Decimal("10")
TAX_RATE = Decimal("0.10")
MINOR_UNITS_PER_MAJOR = 100


class OrderTotals(NamedTuple):
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total_amount: Decimal


def quantize(amount: Decimal) -> Decimal:
    """Round an amount to whole cents."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(items: Iterable[OrderItem]) -> OrderTotals:
    """Compute the order totals from its line items.

    Shipping is free when the subtotal is strictly above the threshold.

    Args:
        items: Line items with unit price and quantity

    Returns:
        OrderTotals: subtotal, shipping, tax and total, each rounded to cents
    """
    subtotal = quantize(sum((item.price * item.quantity for item in items), Decimal("0")))
    shipping = Decimal("0.00") if subtotal > FREE_SHIPPING_THRESHOLD else quantize(FLAT_SHIPPING)
    tax = quantize(subtotal * TAX_RATE)
    return OrderTotals(subtotal, shipping, tax, quantize(subtotal + shipping + tax))


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to the gateway's integer minor units."""
    return int((quantize(amount) * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert gateway minor units back to a major-unit amount."""
    return quantize(Decimal(amount) / MINOR_UNITS_PER_MAJOR)
