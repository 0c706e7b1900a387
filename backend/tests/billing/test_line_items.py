from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.services.line_items import compute_totals, item_amount, recalculate_invoice, to_money


def line(quantity, unit_price, tax_rate="0"):
    return SimpleNamespace(
        quantity=quantity,
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate),
        amount=None,
    )


def test_scenario_totals_two_lines():
    totals = compute_totals([line(2, "150"), line(1, "300")], tax_enabled=False)
    assert totals.total_amount == Decimal("600.00")
    assert totals.subtotal == Decimal("600.00")
    assert totals.tax_total == Decimal("0.00")
    assert totals.item_amounts == (Decimal("300.00"), Decimal("300.00"))


@pytest.mark.parametrize(
    ("quantity", "unit_price", "tax_rate", "tax_enabled", "expected"),
    [
        (2, "10.00", "7.5", True, Decimal("21.50")),
        (2, "10.00", "7.5", False, Decimal("20.00")),
        (3, "19.99", "0", True, Decimal("59.97")),
        (1, "0.00", "20", True, Decimal("0.00")),
        (4, "12.50", "100", True, Decimal("100.00")),
    ],
)
def test_item_amount(quantity, unit_price, tax_rate, tax_enabled, expected):
    raw = item_amount(quantity, Decimal(unit_price), Decimal(tax_rate), tax_enabled=tax_enabled)
    assert to_money(raw) == expected


def test_rounding_is_half_up():
    # 0.10 * 1.25 = 0.125; banker's rounding would give 0.12
    totals = compute_totals([line(1, "0.10", "25")], tax_enabled=True)
    assert totals.total_amount == Decimal("0.13")


def test_total_rounds_the_raw_sum_once():
    items = [line(1, "0.10", "25") for _ in range(3)]
    totals = compute_totals(items, tax_enabled=True)
    assert totals.item_amounts == (Decimal("0.13"),) * 3
    assert totals.total_amount == Decimal("0.38")
    assert totals.subtotal == Decimal("0.30")
    assert totals.tax_total == Decimal("0.08")


@pytest.mark.parametrize(
    "lines",
    [
        [],
        [(1, "99.99", "0")],
        [(3, "33.33", "8.25"), (2, "0.01", "12.5"), (7, "1.07", "0")],
        [(10, "1000.00", "19"), (1, "0.05", "50")],
    ],
)
def test_total_matches_rounded_sum_of_lines(lines):
    items = [line(*values) for values in lines]
    totals = compute_totals(items, tax_enabled=True)
    expected = sum(
        (Decimal(q) * Decimal(p) * (1 + Decimal(t) / 100) for q, p, t in lines),
        Decimal("0"),
    )
    assert totals.total_amount == to_money(expected)
    assert totals.subtotal + totals.tax_total == totals.total_amount


@pytest.mark.parametrize(
    ("quantity", "unit_price", "tax_rate"),
    [(0, "1.00", "0"), (-1, "1.00", "0"), (1, "-0.01", "0"), (1, "1.00", "100.5"), (1, "1.00", "-1")],
)
def test_item_amount_rejects_invalid_input(quantity, unit_price, tax_rate):
    with pytest.raises(ValueError):
        item_amount(quantity, Decimal(unit_price), Decimal(tax_rate), tax_enabled=True)


def test_missing_tax_rate_counts_as_zero():
    assert item_amount(2, Decimal("5.00"), None, tax_enabled=True) == Decimal("10.00")


def test_recalculate_invoice_writes_derived_fields():
    invoice = SimpleNamespace(
        items=[line(2, "150", "10"), line(1, "300", "0")],
        tax_enabled=True,
        subtotal=None,
        tax_total=None,
        total_amount=None,
    )
    recalculate_invoice(invoice)
    assert [item.amount for item in invoice.items] == [Decimal("330.00"), Decimal("300.00")]
    assert invoice.subtotal == Decimal("600.00")
    assert invoice.tax_total == Decimal("30.00")
    assert invoice.total_amount == Decimal("630.00")

    invoice.tax_enabled = False
    recalculate_invoice(invoice)
    assert invoice.total_amount == Decimal("600.00")
    assert invoice.items[0].amount == Decimal("300.00")
