from typing import Iterable, List, Optional

from fastapi import HTTPException

ITEM_STATUSES = ("NEW", "SENT", "IN_PROGRESS", "READY", "SERVED", "VOID")
ORDER_STATUSES = ("OPEN", "IN_KITCHEN", "READY", "FOR_PAYMENT", "PAID", "CANCELLED")
OPEN_ORDER_STATUSES = ("OPEN", "IN_KITCHEN", "READY", "FOR_PAYMENT")
CLOSED_ORDER_STATUSES = ("PAID", "CANCELLED")

_KITCHEN_ITEM_STATUSES = {"SENT", "IN_PROGRESS"}
_DONE_ITEM_STATUSES = {"READY", "SERVED"}


def is_billable_item(status: Optional[str]) -> bool:
    return str(status or "").upper() != "VOID"


def is_closed_order_status(status: Optional[str]) -> bool:
    return str(status or "").upper() in CLOSED_ORDER_STATUSES


def derive_order_status_from_items(item_statuses: Iterable[str]) -> str:
    """
    Order status implied by its line items. VOID lines are ignored; PAID and
    CANCELLED are never derived, they only come from payment/cancel actions.
    """
    billable = [str(s).upper() for s in item_statuses if is_billable_item(s)]
    if not billable:
        return "OPEN"
    if any(s in _KITCHEN_ITEM_STATUSES for s in billable):
        return "IN_KITCHEN"
    if all(s == "SERVED" for s in billable):
        return "FOR_PAYMENT"
    if all(s in _DONE_ITEM_STATUSES for s in billable):
        return "READY"
    return "OPEN"


def parse_status_in(raw: Optional[str]) -> List[str]:
    # "open,in_kitchen" -> ["OPEN", "IN_KITCHEN"]
    values = [p.strip().upper() for p in (raw or "").split(",") if p.strip()]
    for v in values:
        if v not in ORDER_STATUSES:
            raise HTTPException(status_code=400, detail="invalid status filter")
    return values
