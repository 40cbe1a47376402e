from decimal import Decimal

from backend.app import order_totals
from backend.app.order_totals import apply_order_discounts, calculate_order_totals, format_money, round_half_up


def _item(price, qty=1, pct=0, status="NEW"):
    return {"unit_price_cents": price, "quantity": qty, "discount_percent": Decimal(str(pct)), "status": status}


def test_round_half_up():
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(Decimal("2.49")) == 2
    assert round_half_up(0) == 0


def test_totals_skip_void_items_and_apply_line_discounts():
    items = [_item(1000, 2), _item(500, 1, pct=10), _item(9999, 1, status="VOID")]
    totals = calculate_order_totals(items, Decimal("0.05"))
    # 2000 + (500 - 50)
    assert totals["subtotal_cents"] == 2450
    assert totals["discount_cents"] == 50
    assert totals["tax_cents"] == 123  # 122.5 rounds up
    assert totals["total_cents"] == 2573


def test_totals_use_default_tax_rate(monkeypatch):
    monkeypatch.setattr(order_totals.settings, "default_tax_rate", Decimal("0.10"))
    totals = calculate_order_totals([_item(1000)])
    assert totals["tax_cents"] == 100
    assert totals["total_cents"] == 1100


def test_zero_tax_rate_is_respected():
    totals = calculate_order_totals([_item(1000)], Decimal("0"))
    assert totals["tax_cents"] == 0
    assert totals["total_cents"] == 1000


def test_order_discount_comes_off_total_once():
    base = calculate_order_totals([_item(1000)], Decimal("0.05"))
    out = apply_order_discounts(base, 200)
    assert out["subtotal_cents"] == 1000
    assert out["tax_cents"] == 50
    assert out["discount_cents"] == 200
    assert out["total_cents"] == 850
    # Recomputing from the same inputs is stable.
    assert apply_order_discounts(base, 200) == out


def test_order_discount_never_makes_total_negative():
    base = calculate_order_totals([_item(100)], Decimal("0"))
    assert apply_order_discounts(base, 500)["total_cents"] == 0


def test_format_money():
    assert format_money(1250, "aed") == "AED 12.50"
    assert format_money(123456789, "USD") == "USD 1,234,567.89"
