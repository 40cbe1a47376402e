from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth
from ..order_status import is_closed_order_status
from ..pos_orders import mark_prep_completed, mark_prep_started, recompute_order

router = APIRouter(prefix="/pos/tenants/{tenant}/kitchen", tags=["pos-kitchen"])

KITCHEN_ORDER_STATUSES = ["IN_KITCHEN", "READY"]


@router.get("/queue")
def kitchen_queue(ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT o.id, o.number, o.status, o.table_id, t.name AS table_name, o.notes,
                       o.opened_at, o.sent_to_kitchen_at
                FROM pos_orders o
                LEFT JOIN pos_tables t ON t.id = o.table_id
                WHERE o.tenant_id = %s AND o.status::text = ANY(%s)
                ORDER BY o.sent_to_kitchen_at NULLS LAST, o.opened_at
                """,
                (tenant_id, KITCHEN_ORDER_STATUSES),
            )
            orders = [dict(o, items=[]) for o in cur.fetchall()]
            if not orders:
                return {"orders": []}
            cur.execute(
                """
                SELECT id, order_id, product_name, quantity, notes, status, sent_at, ready_at
                FROM pos_order_items
                WHERE order_id = ANY(%s) AND status NOT IN ('NEW', 'VOID')
                ORDER BY created_at, id
                """,
                ([o["id"] for o in orders],),
            )
            by_order = {str(o["id"]): o for o in orders}
            for it in cur.fetchall():
                by_order[str(it["order_id"])]["items"].append(it)
            return {"orders": orders}


@router.get("/prep-time")
def prep_time_stats(product_id: Optional[str] = None, days: int = 7, ctx=Depends(require_pos_auth)):
    days = max(1, min(365, days))
    where = ["l.tenant_id = %s", "l.completed_at IS NOT NULL", "l.completed_at >= now() - make_interval(days => %s)"]
    params = [ctx["tenant_id"], days]
    if product_id:
        where.append("l.product_id = %s")
        params.append(product_id)
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT COUNT(*) AS completed,
                       COALESCE(ROUND(AVG(l.prep_seconds)), 0)::int AS avg_seconds,
                       COALESCE(MIN(l.prep_seconds), 0) AS min_seconds,
                       COALESCE(MAX(l.prep_seconds), 0) AS max_seconds
                FROM kitchen_prep_logs l
                WHERE {' AND '.join(where)}
                """,
                params,
            )
            summary = cur.fetchone()
            cur.execute(
                f"""
                SELECT l.product_id, p.name AS product_name, COUNT(*) AS completed,
                       ROUND(AVG(l.prep_seconds))::int AS avg_seconds
                FROM kitchen_prep_logs l
                LEFT JOIN products p ON p.id = l.product_id
                WHERE {' AND '.join(where)}
                GROUP BY l.product_id, p.name
                ORDER BY avg_seconds DESC
                LIMIT 20
                """,
                params,
            )
            return {"days": days, "summary": summary, "by_product": cur.fetchall()}


def _load_item(cur, tenant_id: str, item_id: str) -> dict:
    cur.execute(
        """
        SELECT i.id, i.order_id, i.status, o.status AS order_status
        FROM pos_order_items i
        JOIN pos_orders o ON o.id = i.order_id
        WHERE o.tenant_id = %s AND i.id = %s
        FOR UPDATE OF i, o
        """,
        (tenant_id, item_id),
    )
    item = cur.fetchone()
    if not item:
        raise HTTPException(status_code=404, detail="item not found")
    if is_closed_order_status(item["order_status"]):
        raise HTTPException(status_code=400, detail="order is closed")
    return item


@router.post("/prep-time/{item_id}/start")
def start_prep(item_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                item = _load_item(cur, tenant_id, item_id)
                if item["status"] not in {"SENT", "IN_PROGRESS"}:
                    raise HTTPException(status_code=400, detail="item is not waiting in the kitchen")
                cur.execute(
                    "UPDATE pos_order_items SET status = 'IN_PROGRESS', updated_at = now() WHERE id = %s",
                    (item_id,),
                )
                mark_prep_started(cur, item_id)
                totals = recompute_order(cur, item["order_id"], ctx["tax_rate"], derive=True)
                return {"ok": True, "order_status": totals["status"]}


@router.post("/prep-time/{item_id}/complete")
def complete_prep(item_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                item = _load_item(cur, tenant_id, item_id)
                if item["status"] not in {"SENT", "IN_PROGRESS"}:
                    raise HTTPException(status_code=400, detail="item is not waiting in the kitchen")
                cur.execute(
                    "UPDATE pos_order_items SET status = 'READY', ready_at = now(), updated_at = now() WHERE id = %s",
                    (item_id,),
                )
                log = mark_prep_completed(cur, item_id)
                totals = recompute_order(cur, item["order_id"], ctx["tax_rate"], derive=True)
                return {
                    "ok": True,
                    "prep_seconds": log["prep_seconds"] if log else None,
                    "order_status": totals["status"],
                }
