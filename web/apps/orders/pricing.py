"""Pricing policy for orders.

Pure and deterministic: the same lines always produce the same totals. All
arithmetic is done with ``Decimal``; rounding to cents (half-even) happens
once, on the final total, and the stored tax is whatever remains so that
``total == subtotal + tax + shipping`` holds exactly.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable

from django.conf import settings

from .domain import OrderLine, Totals

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce a price to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_minor_units(amount: Decimal) -> int:
    """Convert an amount to integer cents, e.g. ``Decimal("42.38") -> 4238``."""
    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_EVEN))


@dataclass(frozen=True)
class PricingPolicy:
    """Tax and shipping rules applied to an order's lines.

    Attributes:
        tax_rate: Fraction of the subtotal charged as tax.
        free_shipping_threshold: Subtotals strictly above this ship free.
        flat_shipping_fee: Shipping charged otherwise.
    """

    tax_rate: Decimal = Decimal("0.08")
    free_shipping_threshold: Decimal = Decimal("50.00")
    flat_shipping_fee: Decimal = Decimal("9.99")

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            tax_rate=to_decimal(settings.TAX_RATE),
            free_shipping_threshold=to_decimal(settings.FREE_SHIPPING_THRESHOLD),
            flat_shipping_fee=to_decimal(settings.FLAT_SHIPPING_FEE),
        )

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        return ZERO if subtotal > self.free_shipping_threshold else self.flat_shipping_fee

    def price(self, lines: Iterable[OrderLine]) -> Totals:
        """Compute subtotal, tax, shipping and total for ``lines``.

        Args:
            lines: Order lines carrying the frozen unit price and quantity.

        Returns:
            Totals: With ``total`` rounded half-even to cents.
        """
        subtotal = sum((to_decimal(line.unit_price) * line.quantity for line in lines), ZERO)
        shipping = self.shipping_for(subtotal)
        exact_total = subtotal + subtotal * self.tax_rate + shipping
        total = exact_total.quantize(CENT, rounding=ROUND_HALF_EVEN)
        return Totals(
            subtotal=subtotal,
            tax=total - subtotal - shipping,
            shipping=shipping,
            total=total,
        )
