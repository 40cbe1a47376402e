from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from fastapi import HTTPException

from .order_totals import line_amounts, round_half_up


def outstanding_cents(total_cents: int, captured_cents: int) -> int:
    return max(0, int(total_cents or 0) - int(captured_cents or 0))


def plan_payment(total_cents: int, captured_cents: int, provider: str, requested_cents: Optional[int] = None) -> dict:
    """
    Work out how much of a tendered amount is captured.

    Non-cash overpayments are capped silently; cash overpayments produce change.
    """
    outstanding = outstanding_cents(total_cents, captured_cents)
    requested = outstanding if requested_cents is None else int(requested_cents)
    if requested < 0:
        raise HTTPException(status_code=400, detail="amount must be >= 0")
    amount = min(requested, outstanding)
    change = requested - outstanding if provider == "CASH" and requested > outstanding else 0
    return {
        "amount_cents": amount,
        "received_cents": requested,
        "change_due_cents": change,
        "outstanding_cents": outstanding,
        "fully_paid": int(captured_cents or 0) + amount >= int(total_cents or 0),
    }


def _allocate(total: int, weights: Sequence[int]) -> List[int]:
    # Pro-rata split of `total`; rounding drift goes to the first share.
    if not weights:
        return []
    wsum = sum(weights)
    if total <= 0 or wsum <= 0:
        return [0 for _ in weights]
    shares = [int(Decimal(total) * Decimal(w) / Decimal(wsum)) for w in weights]
    shares[0] += total - sum(shares)
    return shares


def split_equally(outstanding: int, people: int, tip_cents: int = 0) -> List[dict]:
    if people < 2:
        raise HTTPException(status_code=400, detail="number_of_people must be >= 2")
    base, rem = divmod(int(outstanding), people)
    amounts = [base + (rem if i == 0 else 0) for i in range(people)]
    tips = _allocate(int(tip_cents or 0), [1] * people)
    return [
        {"person_index": i, "amount_cents": a, "tip_cents": t}
        for i, (a, t) in enumerate(zip(amounts, tips))
    ]


def split_by_amount(outstanding: int, amounts: Sequence[int], tip_cents: int = 0) -> List[dict]:
    if not amounts:
        raise HTTPException(status_code=400, detail="amounts are required")
    if any(int(a) <= 0 for a in amounts):
        raise HTTPException(status_code=400, detail="amounts must be > 0")
    if sum(int(a) for a in amounts) < int(outstanding):
        raise HTTPException(status_code=400, detail="amounts do not cover the outstanding balance")
    tips = _allocate(int(tip_cents or 0), [int(a) for a in amounts])
    return [
        {"person_index": i, "amount_cents": int(a), "tip_cents": t}
        for i, (a, t) in enumerate(zip(amounts, tips))
    ]


def split_by_items(
    items: Sequence[Mapping],
    assignments: Sequence[Sequence[str]],
    tax_cents: int,
    tip_cents: int = 0,
) -> List[dict]:
    """
    Each person pays for their assigned lines plus a proportional share of
    the order tax. `items` are the order's billable rows keyed by id.
    """
    by_id: Dict[str, Mapping] = {str(it["id"]): it for it in items}
    if not assignments:
        raise HTTPException(status_code=400, detail="items are required")
    seen = set()
    nets = []
    for group in assignments:
        if not group:
            raise HTTPException(status_code=400, detail="each person needs at least one item")
        net = 0
        for item_id in group:
            key = str(item_id)
            if key not in by_id:
                raise HTTPException(status_code=400, detail=f"invalid item: {key}")
            if key in seen:
                raise HTTPException(status_code=400, detail=f"item assigned twice: {key}")
            seen.add(key)
            gross, disc = line_amounts(by_id[key])
            net += gross - disc
        nets.append(net)

    order_net = sum(gross - disc for gross, disc in (line_amounts(it) for it in items))
    out = []
    tips = _allocate(int(tip_cents or 0), nets)
    for i, net in enumerate(nets):
        share_tax = round_half_up(Decimal(int(tax_cents or 0)) * Decimal(net) / Decimal(order_net)) if order_net else 0
        out.append({"person_index": i, "amount_cents": net + share_tax, "tip_cents": tips[i], "item_ids": [str(x) for x in assignments[i]]})
    return out
