"""Order total calculation.

Pure functions only: no store access, no side effects. Callers validate
input shape before pricing a cart.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from .money import ZERO

HUNDRED = Decimal("100")


class PricedLine(Protocol):
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class DiscountSpec:
    """Requested discount: a percentage of the subtotal or a fixed amount."""

    type: str  # "percentage" | "fixed"
    value: Decimal


@dataclass(frozen=True)
class TaxSpec:
    """Requested tax, applied to the discounted subtotal."""

    percentage: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal


def compute_subtotal(line_items: Iterable[PricedLine]) -> Decimal:
    return sum((line.unit_price * line.quantity for line in line_items), ZERO)


def compute_discount(subtotal: Decimal, discount: DiscountSpec | None) -> Decimal:
    """Amount taken off the subtotal, never more than the subtotal itself."""
    if discount is None:
        return ZERO
    if discount.type == "percentage":
        amount = subtotal * discount.value / HUNDRED
    elif discount.type == "fixed":
        amount = discount.value
    else:
        raise ValueError(f"Unknown discount type: {discount.type}")
    return min(amount, subtotal)


def compute_tax(taxable: Decimal, tax: TaxSpec | None) -> Decimal:
    if tax is None:
        return ZERO
    return taxable * tax.percentage / HUNDRED


def compute_order_totals(
    line_items: Iterable[PricedLine],
    discount: DiscountSpec | None = None,
    tax: TaxSpec | None = None,
) -> OrderTotals:
    """Compute subtotal, discount, tax and grand total for a cart.

    ``total == subtotal - discount_amount + tax_amount`` holds exactly since
    every step is Decimal arithmetic.

    Args:
        line_items: Objects with ``unit_price`` and ``quantity``.
        discount: Optional discount settings.
        tax: Optional tax settings.

    Returns:
        The computed OrderTotals.
    """
    subtotal = compute_subtotal(line_items)
    discount_amount = compute_discount(subtotal, discount)
    after_discount = subtotal - discount_amount
    tax_amount = compute_tax(after_discount, tax)
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total=after_discount + tax_amount,
    )
