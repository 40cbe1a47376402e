from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _theme_alias(v):
    v = _to_upper_str(v)
    # Older clients still send the light/dark toggle values.
    return {"LIGHT": "EMERALD", "DARK": "MIDNIGHT"}.get(v, v)


# Canonical codes mirror Postgres enums in `backend/db/migrations/001_init.sql`.
TenantRole = Annotated[Literal["OWNER", "ADMIN", "MANAGER", "STAFF", "KITCHEN"], BeforeValidator(_to_upper_str)]
# OWNER is assigned only at tenant creation.
EmployeeRole = Annotated[Literal["ADMIN", "MANAGER", "STAFF", "KITCHEN"], BeforeValidator(_to_upper_str)]
OrderStatus = Annotated[
    Literal["OPEN", "IN_KITCHEN", "READY", "FOR_PAYMENT", "PAID", "CANCELLED"],
    BeforeValidator(_to_upper_str),
]
OrderItemStatus = Annotated[
    Literal["NEW", "SENT", "IN_PROGRESS", "READY", "SERVED", "VOID"],
    BeforeValidator(_to_upper_str),
]
PaymentProvider = Annotated[Literal["CASH", "BANK", "PAYPAL", "CARD"], BeforeValidator(_to_upper_str)]
ConnectionStatus = Annotated[Literal["CONNECTED", "DISCONNECTED"], BeforeValidator(_to_upper_str)]
DiscountType = Annotated[Literal["PERCENTAGE", "FIXED", "BOGO"], BeforeValidator(_to_upper_str)]
DiscountScope = Annotated[Literal["ORDER", "CATEGORY", "PRODUCT"], BeforeValidator(_to_upper_str)]
InvoiceStatus = Annotated[Literal["DRAFT", "SENT", "PAID", "OVERDUE", "VOID"], BeforeValidator(_to_upper_str)]
MovementType = Annotated[Literal["RECEIPT", "DELIVERY", "ADJUSTMENT", "TRANSFER"], BeforeValidator(_to_upper_str)]
TenantIndustry = Annotated[Literal["RESTAURANT", "CAFE", "BAKERY", "RETAIL", "OTHER"], BeforeValidator(_to_upper_str)]
CompanySize = Annotated[
    Literal["S1_5", "S6_20", "S21_50", "S51_200", "S201_1000", "S1000_PLUS"],
    BeforeValidator(_to_upper_str),
]
TenantTheme = Annotated[Literal["EMERALD", "MIDNIGHT", "OCEAN", "SUNSET"], BeforeValidator(_theme_alias)]
SplitType = Annotated[Literal["equally", "by_amount", "by_items"], BeforeValidator(_to_lower_str)]
ReportPeriod = Annotated[
    Literal["today", "yesterday", "week", "month", "year", "custom"],
    BeforeValidator(_to_lower_str),
]
ReportGroupBy = Annotated[Literal["hour", "day", "week", "month"], BeforeValidator(_to_lower_str)]

CurrencyCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$"),
]
Email = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
]
DiscountCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[A-Z0-9][A-Z0-9_-]*$"),
]

MANAGER_ROLES = frozenset({"OWNER", "ADMIN", "MANAGER"})
ADMIN_ROLES = frozenset({"OWNER", "ADMIN"})
