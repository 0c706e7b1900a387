from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


class LineItemLike(Protocol):
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal | None


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    tax_total: Decimal
    total_amount: Decimal
    item_amounts: tuple[Decimal, ...]


def to_money(value: Decimal | int | str) -> Decimal:
    """Round to the currency minor unit, half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def item_amount(
    quantity: int,
    unit_price: Decimal,
    tax_rate: Decimal | None = None,
    *,
    tax_enabled: bool = False,
) -> Decimal:
    """Unrounded amount for a single line.

    Tax only applies when the invoice has tax enabled; a line's tax rate is
    otherwise ignored.
    """
    if quantity < 1:
        raise ValueError("quantity must be at least 1")
    unit_price = Decimal(unit_price)
    if unit_price < 0:
        raise ValueError("unit_price cannot be negative")
    rate = Decimal(tax_rate) if tax_rate is not None else Decimal("0")
    if rate < 0 or rate > HUNDRED:
        raise ValueError("tax_rate must be between 0 and 100")

    amount = Decimal(quantity) * unit_price
    if tax_enabled and rate:
        amount = amount * (1 + rate / HUNDRED)
    return amount


def compute_totals(items: Iterable[LineItemLike], *, tax_enabled: bool) -> InvoiceTotals:
    raw_total = Decimal("0")
    raw_subtotal = Decimal("0")
    amounts: list[Decimal] = []
    for item in items:
        raw = item_amount(item.quantity, item.unit_price, item.tax_rate, tax_enabled=tax_enabled)
        raw_total += raw
        raw_subtotal += Decimal(item.quantity) * Decimal(item.unit_price)
        amounts.append(to_money(raw))

    total_amount = to_money(raw_total)
    subtotal = to_money(raw_subtotal)
    return InvoiceTotals(
        subtotal=subtotal,
        tax_total=total_amount - subtotal,
        total_amount=total_amount,
        item_amounts=tuple(amounts),
    )


def recalculate_invoice(invoice) -> InvoiceTotals:
    """Write derived amounts onto an invoice and its items in place."""
    items = list(invoice.items or [])
    totals = compute_totals(items, tax_enabled=bool(invoice.tax_enabled))
    for item, amount in zip(items, totals.item_amounts):
        item.amount = amount
    invoice.subtotal = totals.subtotal
    invoice.tax_total = totals.tax_total
    invoice.total_amount = totals.total_amount
    return totals
