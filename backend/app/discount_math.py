from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from fastapi import HTTPException

from .order_status import is_billable_item
from .order_totals import line_amounts, round_half_up

MAX_PERCENT_BPS = 10000


def discount_amount(discount_type: str, value: int, applicable_cents: int) -> int:
    # PERCENTAGE values are basis points: 1500 = 15%.
    applicable = max(0, int(applicable_cents or 0))
    v = int(value or 0)
    if discount_type == "PERCENTAGE":
        return min(applicable, round_half_up(Decimal(applicable) * Decimal(v) / Decimal(MAX_PERCENT_BPS)))
    if discount_type == "FIXED":
        return min(v, applicable)
    if discount_type == "BOGO":
        return round_half_up(Decimal(applicable) / Decimal(2))
    raise HTTPException(status_code=400, detail="invalid discount type")


def applicable_subtotal(
    items: Iterable[Mapping],
    scope: str,
    category_ids: Optional[Iterable] = None,
    product_ids: Optional[Iterable] = None,
) -> int:
    """
    Net line total of billable items the discount scope covers. A scoped
    discount with an empty target list covers the whole order.
    """
    cats = {str(c) for c in (category_ids or [])}
    prods = {str(p) for p in (product_ids or [])}
    total = 0
    for it in items:
        if not is_billable_item(it.get("status")):
            continue
        if scope == "PRODUCT" and prods and str(it.get("product_id")) not in prods:
            continue
        if scope == "CATEGORY" and cats and str(it.get("category_id")) not in cats:
            continue
        gross, disc = line_amounts(it)
        total += gross - disc
    return total


def assert_discount_usable(discount: Mapping, order_subtotal_cents: int, now: datetime, already_applied: bool = False) -> None:
    if not discount.get("is_active"):
        raise HTTPException(status_code=400, detail="discount is not active")
    starts_at: Optional[datetime] = discount.get("starts_at")
    ends_at: Optional[datetime] = discount.get("ends_at")
    if starts_at and now < starts_at:
        raise HTTPException(status_code=400, detail="discount is not yet valid")
    if ends_at and now > ends_at:
        raise HTTPException(status_code=400, detail="discount has expired")
    max_usage = discount.get("max_usage")
    if max_usage is not None and int(discount.get("usage_count") or 0) >= int(max_usage):
        raise HTTPException(status_code=400, detail="discount usage limit reached")
    min_order = discount.get("min_order_cents")
    if min_order is not None and int(order_subtotal_cents) < int(min_order):
        raise HTTPException(status_code=400, detail="order does not meet the minimum for this discount")
    if already_applied:
        raise HTTPException(status_code=400, detail="discount already applied to this order")
