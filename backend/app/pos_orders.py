import json
from typing import Optional

from fastapi import HTTPException

from .order_status import derive_order_status_from_items
from .order_totals import apply_order_discounts, calculate_order_totals


def lock_order(cur, tenant_id: str, order_id: str) -> dict:
    cur.execute(
        """
        SELECT id, status, currency, table_id, customer_id, sent_to_kitchen_at,
               subtotal_cents, tax_cents, discount_cents, tip_cents, total_cents
        FROM pos_orders
        WHERE tenant_id = %s AND id = %s
        FOR UPDATE
        """,
        (tenant_id, order_id),
    )
    order = cur.fetchone()
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    return order


def load_order_items(cur, order_id: str) -> list:
    cur.execute(
        """
        SELECT i.id, i.product_id, p.category_id, i.product_name, i.unit_price_cents,
               i.quantity, i.discount_percent, i.status, i.notes, i.created_at
        FROM pos_order_items i
        LEFT JOIN products p ON p.id = i.product_id
        WHERE i.order_id = %s
        ORDER BY i.created_at, i.id
        """,
        (order_id,),
    )
    return cur.fetchall()


def captured_cents(cur, order_id: str) -> int:
    cur.execute(
        """
        SELECT COALESCE(SUM(amount_cents), 0) AS captured
        FROM pos_payments
        WHERE order_id = %s AND status = 'CAPTURED'
        """,
        (order_id,),
    )
    return int(cur.fetchone()["captured"] or 0)


def recompute_order(cur, order_id: str, tax_rate, status: Optional[str] = None, derive: bool = False) -> dict:
    """
    Rewrite the stored totals of an order from its items and applied discounts.

    `derive=True` also replaces the status with the one implied by the items;
    otherwise `status` (if given) is written as-is.
    """
    items = load_order_items(cur, order_id)
    cur.execute(
        "SELECT COALESCE(SUM(amount_cents), 0) AS applied FROM order_discounts WHERE order_id = %s",
        (order_id,),
    )
    applied = int(cur.fetchone()["applied"] or 0)
    totals = apply_order_discounts(calculate_order_totals(items, tax_rate), applied)
    if derive:
        status = derive_order_status_from_items([it["status"] for it in items])
    cur.execute(
        """
        UPDATE pos_orders
        SET subtotal_cents = %s, tax_cents = %s, discount_cents = %s, total_cents = %s,
            status = COALESCE(%s::pos_order_status, status), updated_at = now()
        WHERE id = %s
        RETURNING status
        """,
        (
            totals["subtotal_cents"],
            totals["tax_cents"],
            totals["discount_cents"],
            totals["total_cents"],
            status,
            order_id,
        ),
    )
    row = cur.fetchone()
    return {**totals, "status": row["status"] if row else status, "items": items}


def fetch_order(cur, tenant_id: str, order_id: str) -> dict:
    cur.execute(
        """
        SELECT o.id, o.number, o.status, o.currency, o.notes, o.table_id, t.name AS table_name,
               o.customer_id, c.name AS customer_name,
               o.subtotal_cents, o.tax_cents, o.discount_cents, o.tip_cents, o.total_cents,
               o.opened_at, o.sent_to_kitchen_at, o.closed_at
        FROM pos_orders o
        LEFT JOIN pos_tables t ON t.id = o.table_id
        LEFT JOIN customers c ON c.id = o.customer_id
        WHERE o.tenant_id = %s AND o.id = %s
        """,
        (tenant_id, order_id),
    )
    order = cur.fetchone()
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    order = dict(order)
    order["items"] = load_order_items(cur, order_id)
    cur.execute(
        """
        SELECT id, provider, status, amount_cents, currency, reference, metadata, created_at
        FROM pos_payments
        WHERE order_id = %s
        ORDER BY created_at, id
        """,
        (order_id,),
    )
    order["payments"] = cur.fetchall()
    return order


def record_payment(
    cur,
    ctx: dict,
    order_id: str,
    provider: str,
    amount_cents: int,
    tip_cents: int = 0,
    reference: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> str:
    cur.execute(
        """
        INSERT INTO pos_payments
          (id, tenant_id, order_id, provider, status, amount_cents, currency, reference, metadata, created_by)
        VALUES
          (gen_random_uuid(), %s, %s, %s, 'CAPTURED', %s, %s, %s, %s::jsonb, %s)
        RETURNING id
        """,
        (
            ctx["tenant_id"],
            order_id,
            provider,
            int(amount_cents),
            ctx["tenant_currency"],
            reference,
            json.dumps(metadata or {}),
            ctx["user"]["id"],
        ),
    )
    payment_id = cur.fetchone()["id"]
    if tip_cents and int(tip_cents) > 0:
        cur.execute(
            """
            INSERT INTO tips (id, tenant_id, order_id, payment_id, amount_cents, created_by)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
            """,
            (ctx["tenant_id"], order_id, payment_id, int(tip_cents), ctx["user"]["id"]),
        )
        cur.execute(
            "UPDATE pos_orders SET tip_cents = tip_cents + %s WHERE id = %s",
            (int(tip_cents), order_id),
        )
    return payment_id


def settle_order(cur, order_id: str, fully_paid: bool) -> str:
    status = "PAID" if fully_paid else "FOR_PAYMENT"
    cur.execute(
        """
        UPDATE pos_orders
        SET status = %s, closed_at = CASE WHEN %s THEN now() ELSE NULL END, updated_at = now()
        WHERE id = %s
        """,
        (status, fully_paid, order_id),
    )
    return status


def open_prep_logs(cur, tenant_id: str, order_id: str, sent_items: list) -> None:
    for it in sent_items:
        cur.execute(
            """
            INSERT INTO kitchen_prep_logs (id, tenant_id, order_id, order_item_id, product_id, sent_at)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, now())
            ON CONFLICT (order_item_id) DO NOTHING
            """,
            (tenant_id, order_id, it["id"], it.get("product_id")),
        )


def mark_prep_started(cur, item_id: str) -> None:
    cur.execute(
        """
        UPDATE kitchen_prep_logs
        SET started_at = COALESCE(started_at, now())
        WHERE order_item_id = %s AND completed_at IS NULL
        """,
        (item_id,),
    )


def mark_prep_completed(cur, item_id: str) -> Optional[dict]:
    cur.execute(
        """
        UPDATE kitchen_prep_logs
        SET started_at = COALESCE(started_at, sent_at),
            completed_at = now(),
            prep_seconds = GREATEST(0, EXTRACT(EPOCH FROM now() - COALESCE(started_at, sent_at)))::int
        WHERE order_item_id = %s AND completed_at IS NULL
        RETURNING id, started_at, completed_at, prep_seconds
        """,
        (item_id,),
    )
    return cur.fetchone()


def totals_out(totals: dict) -> dict:
    return {k: v for k, v in totals.items() if k != "items"}
