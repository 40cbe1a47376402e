from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Literal, Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import assert_role, require_pos_auth
from ..discount_math import applicable_subtotal, assert_discount_usable, discount_amount
from ..order_status import is_closed_order_status
from ..pos_orders import load_order_items, lock_order, recompute_order, totals_out
from ..validation import MANAGER_ROLES

router = APIRouter(prefix="/pos/tenants/{tenant}/orders/{order_id}/discounts", tags=["pos-orders"])


class ManualDiscountIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    type: Literal["PERCENTAGE", "FIXED"]
    value: int = Field(ge=0)


class ApplyDiscountIn(BaseModel):
    discount_id: Optional[str] = None
    code: Optional[str] = None
    manual: Optional[ManualDiscountIn] = None


@router.get("")
def list_order_discounts(order_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            lock_order(cur, ctx["tenant_id"], order_id)
            cur.execute(
                """
                SELECT id, discount_id, name, type, value, amount_cents, created_at
                FROM order_discounts
                WHERE order_id = %s
                ORDER BY created_at
                """,
                (order_id,),
            )
            return {"discounts": cur.fetchall()}


@router.post("")
def apply_discount(order_id: str, data: ApplyDiscountIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if is_closed_order_status(order["status"]):
                    raise HTTPException(status_code=400, detail="cannot apply discount to a closed order")
                items = load_order_items(cur, order_id)
                order_subtotal = applicable_subtotal(items, "ORDER")

                discount_id = None
                if data.manual:
                    assert_role(ctx, MANAGER_ROLES, detail="only managers can apply manual discounts")
                    name, dtype, value = data.manual.name.strip(), data.manual.type, data.manual.value
                    amount = discount_amount(dtype, value, order_subtotal)
                else:
                    if data.discount_id:
                        where, key = "id = %s", data.discount_id
                    elif data.code:
                        where, key = "code = %s", data.code.strip().upper()
                    else:
                        raise HTTPException(status_code=400, detail="provide discount_id, code or manual")
                    cur.execute(
                        f"""
                        SELECT id, name, type, value, scope, category_ids, product_ids, min_order_cents,
                               max_usage, usage_count, starts_at, ends_at, is_active
                        FROM discounts
                        WHERE tenant_id = %s AND {where}
                        FOR UPDATE
                        """,
                        (tenant_id, key),
                    )
                    d = cur.fetchone()
                    if not d:
                        raise HTTPException(status_code=404, detail="discount not found")
                    cur.execute(
                        "SELECT 1 FROM order_discounts WHERE order_id = %s AND discount_id = %s",
                        (order_id, d["id"]),
                    )
                    already = cur.fetchone() is not None
                    assert_discount_usable(d, order_subtotal, datetime.now(timezone.utc), already_applied=already)
                    applicable = applicable_subtotal(items, d["scope"], d["category_ids"], d["product_ids"])
                    amount = discount_amount(d["type"], d["value"], applicable)
                    discount_id, name, dtype, value = d["id"], d["name"], d["type"], d["value"]

                if amount <= 0:
                    raise HTTPException(status_code=400, detail="discount does not apply to this order")

                cur.execute(
                    """
                    INSERT INTO order_discounts (id, order_id, discount_id, name, type, value, amount_cents, created_by)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (order_id, discount_id, name, dtype, value, amount, ctx["user"]["id"]),
                )
                applied_id = cur.fetchone()["id"]
                if discount_id:
                    cur.execute(
                        "UPDATE discounts SET usage_count = usage_count + 1 WHERE id = %s",
                        (discount_id,),
                    )
                else:
                    cur.execute(
                        """
                        INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                        VALUES (gen_random_uuid(), %s, %s, 'pos_manual_discount', 'pos_order', %s, %s::jsonb)
                        """,
                        (
                            tenant_id,
                            ctx["user"]["id"],
                            order_id,
                            json.dumps({"name": name, "type": dtype, "value": value, "amount_cents": amount}),
                        ),
                    )
                totals = recompute_order(cur, order_id, ctx["tax_rate"])
                return {
                    "applied_discount": {"id": applied_id, "name": name, "type": dtype, "value": value, "amount_cents": amount},
                    **totals_out(totals),
                }


@router.delete("/{applied_id}")
def remove_discount(order_id: str, applied_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if is_closed_order_status(order["status"]):
                    raise HTTPException(status_code=400, detail="cannot remove discount from a closed order")
                cur.execute(
                    "DELETE FROM order_discounts WHERE order_id = %s AND id = %s RETURNING discount_id",
                    (order_id, applied_id),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="applied discount not found")
                if row["discount_id"]:
                    cur.execute(
                        "UPDATE discounts SET usage_count = GREATEST(0, usage_count - 1) WHERE id = %s",
                        (row["discount_id"],),
                    )
                totals = recompute_order(cur, order_id, ctx["tax_rate"])
                return {"ok": True, **totals_out(totals)}
