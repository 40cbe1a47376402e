from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional
import json
import secrets
import time

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth
from ..order_status import (
    OPEN_ORDER_STATUSES,
    derive_order_status_from_items,
    is_billable_item,
    is_closed_order_status,
    parse_status_in,
)
from ..payment_math import plan_payment
from ..pos_orders import (
    captured_cents,
    fetch_order,
    load_order_items,
    lock_order,
    mark_prep_completed,
    mark_prep_started,
    open_prep_logs,
    recompute_order,
    totals_out,
    record_payment,
    settle_order,
)
from ..tenant_slug import to_base36
from ..validation import OrderItemStatus, PaymentProvider

router = APIRouter(prefix="/pos/tenants/{tenant}/orders", tags=["pos-orders"])

_NUMBER_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class OrderCreateIn(BaseModel):
    table_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    product_name: Optional[str] = Field(default=None, max_length=200)
    unit_price_cents: Optional[int] = Field(default=None, ge=1)
    quantity: int = Field(default=1, ge=1, le=99)
    notes: Optional[str] = Field(default=None, max_length=500)
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class OrderItemPatch(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=1, le=99)
    notes: Optional[str] = Field(default=None, max_length=500)
    status: Optional[OrderItemStatus] = None


class PayIn(BaseModel):
    provider: PaymentProvider
    amount_cents: Optional[int] = Field(default=None, ge=1)
    tip_cents: int = Field(default=0, ge=0)
    reference: Optional[str] = Field(default=None, max_length=120)


class OrderCustomerIn(BaseModel):
    customer_id: str


def generate_order_number() -> str:
    rand = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(4))
    return f"POS-{to_base36(int(time.time() * 1000)).upper()}-{rand}"


@router.get("")
def list_orders(
    table_id: Optional[str] = None,
    status: Optional[str] = None,
    status_in: Optional[str] = None,
    ctx=Depends(require_pos_auth),
):
    if status_in:
        statuses = parse_status_in(status_in)
    elif status:
        statuses = parse_status_in(status)
    else:
        statuses = list(OPEN_ORDER_STATUSES)
    where = ["o.tenant_id = %s", "o.status::text = ANY(%s)"]
    params = [ctx["tenant_id"], statuses]
    if table_id:
        where.append("o.table_id = %s")
        params.append(table_id)
    params.append(1 if table_id else 30)
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT o.id, o.number, o.status, o.table_id, t.name AS table_name, o.customer_id,
                       o.subtotal_cents, o.tax_cents, o.discount_cents, o.tip_cents, o.total_cents,
                       o.currency, o.opened_at, o.sent_to_kitchen_at, o.closed_at,
                       (SELECT COUNT(*) FROM pos_order_items i
                        WHERE i.order_id = o.id AND i.status <> 'VOID') AS item_count
                FROM pos_orders o
                LEFT JOIN pos_tables t ON t.id = o.table_id
                WHERE {' AND '.join(where)}
                ORDER BY o.opened_at DESC
                LIMIT %s
                """,
                params,
            )
            return {"orders": cur.fetchall()}


@router.post("")
def create_order(data: OrderCreateIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                if data.table_id:
                    cur.execute(
                        """
                        SELECT id FROM pos_tables
                        WHERE tenant_id = %s AND id = %s AND is_active = true
                        FOR UPDATE
                        """,
                        (tenant_id, data.table_id),
                    )
                    if not cur.fetchone():
                        raise HTTPException(status_code=404, detail="table not found")
                    cur.execute(
                        """
                        SELECT id FROM pos_orders
                        WHERE tenant_id = %s AND table_id = %s AND status::text = ANY(%s)
                        ORDER BY opened_at DESC
                        LIMIT 1
                        """,
                        (tenant_id, data.table_id, list(OPEN_ORDER_STATUSES)),
                    )
                    existing = cur.fetchone()
                    if existing:
                        return {"order_id": existing["id"], "reused": True}

                notes = (data.notes or "").strip() or None
                cur.execute(
                    """
                    INSERT INTO pos_orders (id, tenant_id, number, table_id, status, currency, notes, opened_by)
                    VALUES (gen_random_uuid(), %s, %s, %s, 'OPEN', %s, %s, %s)
                    RETURNING id, number
                    """,
                    (tenant_id, generate_order_number(), data.table_id, ctx["tenant_currency"], notes, ctx["user"]["id"]),
                )
                row = cur.fetchone()
                return {"order_id": row["id"], "number": row["number"], "reused": False}


@router.get("/{order_id}")
def get_order(order_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            return {"order": fetch_order(cur, ctx["tenant_id"], order_id)}


@router.post("/{order_id}/items")
def add_item(order_id: str, data: OrderItemIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if is_closed_order_status(order["status"]):
                    raise HTTPException(status_code=400, detail="order is closed")

                if data.product_id:
                    cur.execute(
                        """
                        SELECT id, name, price_cents
                        FROM products
                        WHERE tenant_id = %s AND id = %s AND is_active = true
                        """,
                        (tenant_id, data.product_id),
                    )
                    p = cur.fetchone()
                    if not p:
                        raise HTTPException(status_code=404, detail="product not found")
                    product_id, name, unit_price = p["id"], p["name"], int(p["price_cents"])
                else:
                    name = (data.product_name or "").strip()
                    if not name or data.unit_price_cents is None:
                        raise HTTPException(
                            status_code=400, detail="product_id or product_name with unit_price_cents is required"
                        )
                    product_id, unit_price = None, int(data.unit_price_cents)

                cur.execute(
                    """
                    INSERT INTO pos_order_items
                      (id, tenant_id, order_id, product_id, product_name, unit_price_cents, quantity,
                       discount_percent, notes, status)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, 'NEW')
                    RETURNING id
                    """,
                    (
                        tenant_id,
                        order_id,
                        product_id,
                        name,
                        unit_price,
                        data.quantity,
                        data.discount_percent,
                        (data.notes or "").strip() or None,
                    ),
                )
                item_id = cur.fetchone()["id"]
                # New work on a finished order reopens it.
                reopen = "OPEN" if order["status"] in {"READY", "FOR_PAYMENT"} else None
                totals = recompute_order(cur, order_id, ctx["tax_rate"], status=reopen)
                return {"item_id": item_id, **totals_out(totals)}


@router.patch("/{order_id}/items/{item_id}")
def update_item(order_id: str, item_id: str, data: OrderItemPatch, ctx=Depends(require_pos_auth)):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if is_closed_order_status(order["status"]):
                    raise HTTPException(status_code=400, detail="order is closed")
                cur.execute(
                    """
                    SELECT id, status
                    FROM pos_order_items
                    WHERE order_id = %s AND id = %s
                    FOR UPDATE
                    """,
                    (order_id, item_id),
                )
                item = cur.fetchone()
                if not item:
                    raise HTTPException(status_code=404, detail="item not found")

                new_status = patch.get("status")
                if item["status"] == "VOID" and new_status and new_status != "VOID":
                    raise HTTPException(status_code=400, detail="cannot modify a voided item")
                if ("quantity" in patch or "notes" in patch) and item["status"] != "NEW":
                    raise HTTPException(status_code=400, detail="only new items can be edited")

                fields = ["updated_at = now()"]
                params = []
                if "quantity" in patch and patch["quantity"] is not None:
                    fields.append("quantity = %s")
                    params.append(patch["quantity"])
                if "notes" in patch:
                    fields.append("notes = %s")
                    params.append((patch["notes"] or "").strip() or None)
                if new_status:
                    fields.append("status = %s")
                    params.append(new_status)
                    if new_status == "SENT":
                        fields.append("sent_at = COALESCE(sent_at, now())")
                    elif new_status == "READY":
                        fields.append("ready_at = now()")
                    elif new_status == "SERVED":
                        fields.append("served_at = now()")
                params.extend([order_id, item_id])
                cur.execute(
                    f"""
                    UPDATE pos_order_items
                    SET {', '.join(fields)}
                    WHERE order_id = %s AND id = %s
                    """,
                    params,
                )

                if new_status == "SENT":
                    open_prep_logs(cur, tenant_id, order_id, [{"id": item_id, "product_id": None}])
                elif new_status == "IN_PROGRESS":
                    mark_prep_started(cur, item_id)
                elif new_status in {"READY", "SERVED"}:
                    mark_prep_completed(cur, item_id)

                totals = recompute_order(cur, order_id, ctx["tax_rate"], derive=True)
                return {"ok": True, **totals_out(totals)}


@router.post("/{order_id}/send")
def send_to_kitchen(order_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if is_closed_order_status(order["status"]):
                    raise HTTPException(status_code=400, detail="order is closed")
                items = load_order_items(cur, order_id)
                billable = [it for it in items if is_billable_item(it["status"])]
                if not billable:
                    raise HTTPException(status_code=400, detail="order has no items")

                cur.execute(
                    """
                    UPDATE pos_order_items
                    SET status = 'SENT', sent_at = now(), updated_at = now()
                    WHERE order_id = %s AND status = 'NEW'
                    RETURNING id, product_id
                    """,
                    (order_id,),
                )
                sent = cur.fetchall()
                open_prep_logs(cur, tenant_id, order_id, sent)

                derived = derive_order_status_from_items(
                    ["SENT" if it["status"] == "NEW" else it["status"] for it in billable]
                )
                next_status = "IN_KITCHEN" if derived == "OPEN" else derived
                cur.execute(
                    """
                    UPDATE pos_orders
                    SET sent_to_kitchen_at = COALESCE(sent_to_kitchen_at, now())
                    WHERE id = %s
                    """,
                    (order_id,),
                )
                totals = recompute_order(cur, order_id, ctx["tax_rate"], status=next_status)
                return {"sent_items": len(sent), **totals_out(totals)}


@router.post("/{order_id}/pay")
def pay_order(order_id: str, data: PayIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if order["status"] == "CANCELLED":
                    raise HTTPException(status_code=400, detail="order is cancelled")
                if order["status"] == "PAID":
                    return {"order": fetch_order(cur, tenant_id, order_id), "change_due_cents": 0}

                totals = recompute_order(cur, order_id, ctx["tax_rate"])
                captured = captured_cents(cur, order_id)
                tip = int(data.tip_cents or 0)
                due = totals["total_cents"] + int(order["tip_cents"] or 0) + tip
                plan = plan_payment(due, captured, data.provider, data.amount_cents)

                if plan["outstanding_cents"] <= 0:
                    settle_order(cur, order_id, True)
                    return {"order": fetch_order(cur, tenant_id, order_id), "change_due_cents": 0}

                metadata = {}
                if plan["change_due_cents"] > 0:
                    metadata = {"received_cents": plan["received_cents"], "change_due_cents": plan["change_due_cents"]}
                record_payment(
                    cur,
                    ctx,
                    order_id,
                    data.provider,
                    plan["amount_cents"],
                    tip_cents=tip,
                    reference=data.reference,
                    metadata=metadata,
                )
                settle_order(cur, order_id, plan["fully_paid"])
                return {"order": fetch_order(cur, tenant_id, order_id), "change_due_cents": plan["change_due_cents"]}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                order = lock_order(cur, tenant_id, order_id)
                if order["status"] == "PAID":
                    raise HTTPException(status_code=400, detail="paid orders cannot be cancelled")
                if order["status"] == "CANCELLED":
                    return {"ok": True, "status": "CANCELLED"}
                cur.execute(
                    """
                    UPDATE pos_orders
                    SET status = 'CANCELLED', closed_at = now(), updated_at = now()
                    WHERE id = %s
                    """,
                    (order_id,),
                )
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'pos_order_cancel', 'pos_order', %s, %s::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], order_id, json.dumps({"previous_status": order["status"]})),
                )
                return {"ok": True, "status": "CANCELLED"}


@router.put("/{order_id}/customer")
def set_order_customer(order_id: str, data: OrderCustomerIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                lock_order(cur, tenant_id, order_id)
                cur.execute(
                    "SELECT id, name FROM customers WHERE tenant_id = %s AND id = %s",
                    (tenant_id, data.customer_id),
                )
                customer = cur.fetchone()
                if not customer:
                    raise HTTPException(status_code=404, detail="customer not found")
                cur.execute(
                    "UPDATE pos_orders SET customer_id = %s, updated_at = now() WHERE id = %s",
                    (customer["id"], order_id),
                )
                return {"ok": True, "customer": customer}


@router.delete("/{order_id}/customer")
def remove_order_customer(order_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                lock_order(cur, tenant_id, order_id)
                cur.execute(
                    "UPDATE pos_orders SET customer_id = NULL, updated_at = now() WHERE id = %s",
                    (order_id,),
                )
                return {"ok": True}
