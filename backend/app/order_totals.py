from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from .config import settings
from .order_status import is_billable_item


def round_half_up(value) -> int:
    # Money math stays in integer cents; halves round away from zero for positives.
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_amounts(item: Mapping) -> tuple:
    """(gross_cents, discount_cents) for one order item row."""
    gross = int(item.get("unit_price_cents") or 0) * int(item.get("quantity") or 0)
    pct = Decimal(str(item.get("discount_percent") or 0))
    return gross, round_half_up(Decimal(gross) * pct / Decimal(100))


def calculate_order_totals(items: Iterable[Mapping], tax_rate: Optional[Decimal] = None) -> dict:
    rate = settings.default_tax_rate if tax_rate is None else Decimal(str(tax_rate))
    gross_sum = 0
    discount_sum = 0
    for it in items:
        if not is_billable_item(it.get("status")):
            continue
        gross, disc = line_amounts(it)
        gross_sum += gross
        discount_sum += disc
    subtotal = gross_sum - discount_sum
    tax = round_half_up(Decimal(subtotal) * rate)
    return {
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "total_cents": subtotal + tax,
        "discount_cents": discount_sum,
    }


def apply_order_discounts(totals: Mapping, applied_discount_cents: int) -> dict:
    # Order-level discounts come off the total; tax stays computed on the item subtotal.
    applied = max(0, int(applied_discount_cents or 0))
    out = dict(totals)
    out["discount_cents"] = int(totals["discount_cents"]) + applied
    out["total_cents"] = max(0, int(totals["subtotal_cents"]) - applied + int(totals["tax_cents"]))
    return out


def format_money(cents: int, currency: str = "AED") -> str:
    amount = (Decimal(int(cents or 0)) / Decimal(100)).quantize(Decimal("0.01"))
    return f"{(currency or '').upper()} {amount:,.2f}".strip()
