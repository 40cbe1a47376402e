import pytest
from pydantic import BaseModel, ValidationError

from backend.app.validation import CurrencyCode, DiscountCode, Email, SplitType, TenantRole, TenantTheme


class _Model(BaseModel):
    role: TenantRole = "STAFF"
    theme: TenantTheme = "EMERALD"
    currency: CurrencyCode = "AED"
    email: Email = "a@b.test"
    code: DiscountCode = "X"
    split: SplitType = "equally"


def test_enum_codes_are_case_insensitive():
    m = _Model(role=" manager ", split="BY_ITEMS", currency="usd")
    assert m.role == "MANAGER"
    assert m.split == "by_items"
    assert m.currency == "USD"


@pytest.mark.parametrize("raw,expected", [("light", "EMERALD"), ("DARK", "MIDNIGHT"), ("ocean", "OCEAN")])
def test_theme_accepts_legacy_toggle_values(raw, expected):
    assert _Model(theme=raw).theme == expected


def test_email_is_lowercased():
    assert _Model(email=" Owner@Shop.Test ").email == "owner@shop.test"


@pytest.mark.parametrize(
    "field,value",
    [
        ("role", "CASHIER"),
        ("theme", "PINK"),
        ("currency", "DOLLARS"),
        ("email", "not-an-email"),
        ("code", "SAVE 10"),
    ],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        _Model(**{field: value})


def test_discount_code_normalized():
    assert _Model(code="summer-10").code == "SUMMER-10"
