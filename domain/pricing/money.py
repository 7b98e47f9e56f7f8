"""
Money calculator - pure functions over order lines.

All amounts are integer VND; VAT is floored so totals never drift.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from domain.common.exceptions import InvalidOrderLineError


class PricedLine(Protocol):
    quantity: int
    unit_price: int


class WeighedLine(Protocol):
    quantity: int
    unit_weight_kg: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: int
    vat_amount: int
    total_before_fees: int

    def with_delivery(self, delivery_fee: int) -> int:
        """Grand total charged to the customer."""
        return self.total_before_fees + delivery_fee


def validate_lines(items: Sequence[PricedLine]) -> None:
    if not items:
        raise InvalidOrderLineError("Order must contain at least one item")
    for index, item in enumerate(items):
        if item.quantity is None or item.quantity <= 0:
            raise InvalidOrderLineError(
                f"Item {index + 1}: quantity must be positive", line_index=index
            )
        if item.unit_price is None or item.unit_price < 0:
            raise InvalidOrderLineError(
                f"Item {index + 1}: unit price cannot be negative", line_index=index
            )


def line_total(item: PricedLine) -> int:
    return int(item.quantity) * int(item.unit_price)


def compute_vat(subtotal: int, vat_rate: int) -> int:
    # integer floor division keeps the result exact for any subtotal
    return subtotal * vat_rate // 100


def compute_totals(items: Sequence[PricedLine], vat_rate: int = 10) -> OrderTotals:
    """Subtotal, VAT and total for a non-empty list of valid lines.

    Raises:
        InvalidOrderLineError: empty list, quantity <= 0 or unit price < 0.
    """
    validate_lines(items)
    subtotal = sum(line_total(item) for item in items)
    vat_amount = compute_vat(subtotal, vat_rate)
    return OrderTotals(
        subtotal=subtotal,
        vat_amount=vat_amount,
        total_before_fees=subtotal + vat_amount,
    )


def total_weight(items: Iterable[WeighedLine]) -> Decimal:
    """Shipping weight of all lines in kilograms."""
    weight = Decimal("0")
    for item in items:
        weight += Decimal(item.quantity) * Decimal(str(item.unit_weight_kg))
    return weight


def grand_total(totals: OrderTotals, delivery_fee: int) -> int:
    return totals.with_delivery(delivery_fee)
