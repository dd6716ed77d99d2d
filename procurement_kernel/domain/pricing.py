"""
Pricing -- purchase order line totals and quote ranking.

Responsibility:
    The single definition of the line total formula and of "cheapest quote".
    The purchase order issuer prices lines with it at issuance; selectors and
    tests re-derive totals from stored lines with the same function.

Architecture position:
    Kernel > Domain -- pure functions over Decimal.  Zero I/O.

Formula (per line; the order total is the sum of line totals):
    base     = (quantity / per_unit_basis) * unit_rate
    discount = base * discount_percent / 100
    taxable  = base - discount
    tax      = taxable * (sgst_percent + cgst_percent) / 100
    total    = taxable + tax

Invariants enforced:
    - All arithmetic is Decimal at full context precision; only the final
      line total is rounded (round_money, 2 places, ROUND_HALF_UP).  The
      component amounts are reported rounded for display but never summed.
    - per_unit_basis defaults to 1 (rate is per single unit).  A basis of
      zero or less is rejected upstream by the issuer's validation.
    - cheapest_quote: lowest unit rate, ties go to the earliest position.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, TypeVar

from procurement_kernel.db.types import HUNDRED, ZERO, round_money

ONE = Decimal("1")


@dataclass(frozen=True)
class LineAmounts:
    """Breakdown of one priced line. ``line_total`` is the stored figure."""
    base: Decimal
    discount: Decimal
    taxable: Decimal
    tax: Decimal
    line_total: Decimal


def compute_line_amounts(
    quantity: Decimal,
    unit_rate: Decimal,
    per_unit_basis: Decimal = ONE,
    discount_percent: Decimal = ZERO,
    sgst_percent: Decimal = ZERO,
    cgst_percent: Decimal = ZERO,
) -> LineAmounts:
    """
    Price one purchase order line.

    Preconditions:
        per_unit_basis > 0 (callers validate before pricing).

    Returns:
        LineAmounts with display-rounded components and the rounded total.
    """
    if per_unit_basis <= ZERO:
        raise ValueError(f"per_unit_basis must be positive, got {per_unit_basis}")

    base = (quantity / per_unit_basis) * unit_rate
    discount = base * discount_percent / HUNDRED
    taxable = base - discount
    tax = taxable * (sgst_percent + cgst_percent) / HUNDRED
    total = taxable + tax

    return LineAmounts(
        base=round_money(base),
        discount=round_money(discount),
        taxable=round_money(taxable),
        tax=round_money(tax),
        line_total=round_money(total),
    )


class PricedLine(Protocol):
    quantity: Decimal
    unit_rate: Decimal
    per_unit_basis: Decimal
    discount_percent: Decimal
    sgst_percent: Decimal
    cgst_percent: Decimal


def line_total_of(line: PricedLine) -> Decimal:
    """Re-derive a stored line's total from its pricing fields."""
    return compute_line_amounts(
        quantity=line.quantity,
        unit_rate=line.unit_rate,
        per_unit_basis=line.per_unit_basis,
        discount_percent=line.discount_percent,
        sgst_percent=line.sgst_percent,
        cgst_percent=line.cgst_percent,
    ).line_total


def order_total(line_totals: Iterable[Decimal]) -> Decimal:
    """Sum of already-rounded line totals."""
    return round_money(sum(line_totals, ZERO))


def split_gst(gst_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Split a combined GST rate into equal SGST and CGST halves."""
    half = gst_percent / 2
    return half, gst_percent - half


class RankedQuote(Protocol):
    unit_rate: Decimal


Q = TypeVar("Q", bound=RankedQuote)


def cheapest_quote(quotes: Sequence[Q]) -> Q:
    """
    Pick the cheapest quote: lowest unit_rate, earliest in sequence on ties.

    Raises:
        ValueError: If quotes is empty.
    """
    if not quotes:
        raise ValueError("cheapest_quote requires at least one quote")
    best_index = min(range(len(quotes)), key=lambda i: (quotes[i].unit_rate, i))
    return quotes[best_index]
