from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth
from ..order_status import is_billable_item
from ..payment_math import outstanding_cents, plan_payment, split_by_amount, split_by_items, split_equally
from ..pos_orders import captured_cents, load_order_items, lock_order, record_payment, settle_order
from ..validation import PaymentProvider, SplitType

router = APIRouter(prefix="/pos/tenants/{tenant}/orders/{order_id}/split-payment", tags=["pos-orders"])


class SplitPlanIn(BaseModel):
    split_type: SplitType
    number_of_people: Optional[int] = Field(default=None, ge=2, le=50)
    amounts: List[int] = []
    # One list of item ids per person.
    items: List[List[str]] = []
    tip_cents: int = Field(default=0, ge=0)


class PayPartIn(BaseModel):
    provider: PaymentProvider
    amount_cents: int = Field(ge=1)
    tip_cents: int = Field(default=0, ge=0)
    person_index: Optional[int] = Field(default=None, ge=0)
    reference: Optional[str] = Field(default=None, max_length=120)


def _order_due(order: dict) -> int:
    return int(order["total_cents"] or 0) + int(order["tip_cents"] or 0)


@router.get("")
def split_summary(order_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            order = lock_order(cur, ctx["tenant_id"], order_id)
            paid = captured_cents(cur, order_id)
            cur.execute(
                """
                SELECT id, provider, amount_cents, metadata, created_at
                FROM pos_payments
                WHERE order_id = %s AND status = 'CAPTURED'
                ORDER BY created_at, id
                """,
                (order_id,),
            )
            payments = cur.fetchall()
            return {
                "total_cents": int(order["total_cents"] or 0),
                "tips_cents": int(order["tip_cents"] or 0),
                "paid_cents": paid,
                "outstanding_cents": outstanding_cents(_order_due(order), paid),
                "status": order["status"],
                "payments": payments,
            }


@router.post("")
def plan_split(order_id: str, data: SplitPlanIn, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            order = lock_order(cur, ctx["tenant_id"], order_id)
            if order["status"] in {"PAID", "CANCELLED"}:
                raise HTTPException(status_code=400, detail="order is closed")
            outstanding = outstanding_cents(_order_due(order), captured_cents(cur, order_id))
            if outstanding <= 0:
                raise HTTPException(status_code=400, detail="nothing left to pay")

            if data.split_type == "equally":
                if not data.number_of_people:
                    raise HTTPException(status_code=400, detail="number_of_people is required")
                parts = split_equally(outstanding, data.number_of_people, data.tip_cents)
            elif data.split_type == "by_amount":
                parts = split_by_amount(outstanding, data.amounts, data.tip_cents)
            else:
                billable = [it for it in load_order_items(cur, order_id) if is_billable_item(it["status"])]
                parts = split_by_items(billable, data.items, int(order["tax_cents"] or 0), data.tip_cents)

            return {
                "split_type": data.split_type,
                "outstanding_cents": outstanding,
                "parts": parts,
            }


@router.post("/pay-part")
def pay_part(order_id: str, data: PayPartIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if order["status"] in {"PAID", "CANCELLED"}:
                    raise HTTPException(status_code=400, detail="order is closed")
                captured = captured_cents(cur, order_id)
                # The part's tip is settled with the part, so it never widens the remaining balance.
                plan = plan_payment(_order_due(order), captured, data.provider, data.amount_cents)
                if plan["amount_cents"] <= 0:
                    raise HTTPException(status_code=400, detail="nothing left to pay")
                metadata = {"split": True, "person_index": data.person_index}
                if plan["change_due_cents"] > 0:
                    metadata.update(received_cents=plan["received_cents"], change_due_cents=plan["change_due_cents"])
                payment_id = record_payment(
                    cur,
                    ctx,
                    order_id,
                    data.provider,
                    plan["amount_cents"] + data.tip_cents,
                    tip_cents=data.tip_cents,
                    reference=data.reference,
                    metadata=metadata,
                )
                status = settle_order(cur, order_id, plan["fully_paid"])
                return {
                    "payment_id": payment_id,
                    "amount_cents": plan["amount_cents"],
                    "tip_cents": data.tip_cents,
                    "change_due_cents": plan["change_due_cents"],
                    "remaining_cents": max(0, plan["outstanding_cents"] - plan["amount_cents"]),
                    "status": status,
                }
