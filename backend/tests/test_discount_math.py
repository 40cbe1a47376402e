from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from backend.app.discount_math import applicable_subtotal, assert_discount_usable, discount_amount

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_percentage_uses_basis_points():
    assert discount_amount("PERCENTAGE", 1500, 2000) == 300
    assert discount_amount("PERCENTAGE", 10000, 2000) == 2000


def test_fixed_is_capped_at_applicable_amount():
    assert discount_amount("FIXED", 500, 2000) == 500
    assert discount_amount("FIXED", 5000, 2000) == 2000


def test_bogo_takes_half():
    assert discount_amount("BOGO", 0, 1001) == 501


def test_unknown_type_rejected():
    with pytest.raises(HTTPException):
        discount_amount("FREE", 1, 100)


def _items():
    return [
        {"product_id": "p1", "category_id": "c1", "unit_price_cents": 1000, "quantity": 1, "status": "NEW"},
        {"product_id": "p2", "category_id": "c2", "unit_price_cents": 500, "quantity": 2, "status": "SENT"},
        {"product_id": "p3", "category_id": "c1", "unit_price_cents": 700, "quantity": 1, "status": "VOID"},
    ]


def test_applicable_subtotal_by_scope():
    assert applicable_subtotal(_items(), "ORDER") == 2000
    assert applicable_subtotal(_items(), "CATEGORY", category_ids=["c1"]) == 1000
    assert applicable_subtotal(_items(), "PRODUCT", product_ids=["p2"]) == 1000
    # An empty target list covers the whole order.
    assert applicable_subtotal(_items(), "PRODUCT", product_ids=[]) == 2000


def _discount(**kw):
    d = {"is_active": True, "starts_at": None, "ends_at": None, "max_usage": None, "usage_count": 0, "min_order_cents": None}
    d.update(kw)
    return d


def test_usable_discount_passes():
    assert_discount_usable(_discount(), 1000, NOW)


@pytest.mark.parametrize(
    "discount,detail",
    [
        (_discount(is_active=False), "discount is not active"),
        (_discount(starts_at=NOW + timedelta(days=1)), "discount is not yet valid"),
        (_discount(ends_at=NOW - timedelta(seconds=1)), "discount has expired"),
        (_discount(max_usage=3, usage_count=3), "discount usage limit reached"),
        (_discount(min_order_cents=5000), "order does not meet the minimum for this discount"),
    ],
)
def test_unusable_discounts(discount, detail):
    with pytest.raises(HTTPException) as exc:
        assert_discount_usable(discount, 1000, NOW)
    assert exc.value.detail == detail


def test_discount_cannot_be_applied_twice():
    with pytest.raises(HTTPException) as exc:
        assert_discount_usable(_discount(), 1000, NOW, already_applied=True)
    assert exc.value.detail == "discount already applied to this order"
