from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..validation import MANAGER_ROLES, MovementType

router = APIRouter(prefix="/pos/tenants/{tenant}/inventory", tags=["pos-inventory"])


class WarehouseIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    code: str = Field(min_length=1, max_length=20)


class StockItemIn(BaseModel):
    warehouse_id: str
    product_id: str
    on_hand: int = Field(ge=0)
    reserved: int = Field(default=0, ge=0)
    reorder_point: int = Field(default=0, ge=0)


class BulkStockIn(BaseModel):
    items: List[StockItemIn] = Field(min_length=1, max_length=500)


class MovementLineIn(BaseModel):
    product_id: str
    quantity: int


class MovementIn(BaseModel):
    type: MovementType
    warehouse_id: str
    destination_warehouse_id: Optional[str] = None
    reference: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=500)
    lines: List[MovementLineIn] = Field(min_length=1)


def movement_delta(movement_type: str, quantity: int) -> int:
    """Signed change applied to the source warehouse for one movement line."""
    q = int(quantity)
    if movement_type == "RECEIPT":
        return abs(q)
    if movement_type in {"DELIVERY", "TRANSFER"}:
        return -abs(q)
    if movement_type == "ADJUSTMENT":
        return q
    raise ValueError(f"unknown movement type: {movement_type}")


def _assert_warehouse(cur, tenant_id: str, warehouse_id: str, field: str = "warehouse_id"):
    cur.execute("SELECT 1 FROM warehouses WHERE tenant_id = %s AND id = %s", (tenant_id, warehouse_id))
    if not cur.fetchone():
        raise HTTPException(status_code=400, detail=f"invalid {field}")


@router.get("/warehouses")
def list_warehouses(ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, name, code, created_at FROM warehouses WHERE tenant_id = %s ORDER BY code",
                (ctx["tenant_id"],),
            )
            return {"warehouses": cur.fetchall()}


@router.post("/warehouses")
def create_warehouse(data: WarehouseIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    code = data.code.strip().upper()
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM warehouses WHERE tenant_id = %s AND code = %s", (tenant_id, code))
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="warehouse code already exists")
                cur.execute(
                    """
                    INSERT INTO warehouses (id, tenant_id, name, code)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    RETURNING id
                    """,
                    (tenant_id, data.name.strip(), code),
                )
                return {"id": cur.fetchone()["id"], "code": code}


@router.get("/stock")
def list_stock(warehouse_id: Optional[str] = None, low_stock_only: bool = False, ctx=Depends(require_pos_auth)):
    where = ["s.tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if warehouse_id:
        where.append("s.warehouse_id = %s")
        params.append(warehouse_id)
    if low_stock_only:
        where.append("(s.on_hand - s.reserved) <= s.reorder_point")
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT s.id, s.warehouse_id, w.code AS warehouse_code, s.product_id, p.name AS product_name, p.sku,
                       s.on_hand, s.reserved, s.reorder_point,
                       (s.on_hand - s.reserved) AS available,
                       (s.on_hand - s.reserved) <= s.reorder_point AS is_low_stock,
                       s.on_hand * COALESCE(p.cost_cents, p.price_cents, 0) AS stock_value_cents
                FROM stock_items s
                JOIN products p ON p.id = s.product_id
                JOIN warehouses w ON w.id = s.warehouse_id
                WHERE {' AND '.join(where)}
                ORDER BY p.name, w.code
                """,
                params,
            )
            return {"stock": cur.fetchall()}


ALERT_SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2}


def stock_alert_severity(available: int, reorder_point: int) -> Optional[str]:
    """
    critical: nothing available; high: at or below half the reorder point;
    medium: at or below the reorder point. None means stock is healthy.
    """
    available = int(available or 0)
    reorder_point = int(reorder_point or 0)
    if available <= 0:
        return "critical"
    if reorder_point > 0 and available * 2 <= reorder_point:
        return "high"
    if available <= reorder_point:
        return "medium"
    return None


@router.get("/alerts")
def stock_alerts(warehouse_id: Optional[str] = None, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    where = ["s.tenant_id = %s", "p.is_active = true"]
    params = [tenant_id]
    if warehouse_id:
        where.append("s.warehouse_id = %s")
        params.append(warehouse_id)
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT s.id, s.warehouse_id, w.name AS warehouse_name, s.product_id, p.name AS product_name, p.sku,
                       c.name AS category_name, s.on_hand, s.reserved, s.reorder_point, s.updated_at
                FROM stock_items s
                JOIN products p ON p.id = s.product_id
                JOIN warehouses w ON w.id = s.warehouse_id
                LEFT JOIN categories c ON c.id = p.category_id
                WHERE {' AND '.join(where)}
                ORDER BY p.name, w.name
                """,
                params,
            )
            stock = cur.fetchall()
            cur.execute(
                """
                SELECT p.id, p.name, p.sku
                FROM products p
                WHERE p.tenant_id = %s AND p.is_active = true
                  AND NOT EXISTS (
                    SELECT 1 FROM stock_items s
                    WHERE s.product_id = p.id AND (%s::uuid IS NULL OR s.warehouse_id = %s::uuid)
                  )
                ORDER BY p.name
                """,
                (tenant_id, warehouse_id, warehouse_id),
            )
            not_tracked = cur.fetchall()

    alerts = []
    for row in stock:
        available = int(row["on_hand"] or 0) - int(row["reserved"] or 0)
        severity = stock_alert_severity(available, row["reorder_point"])
        if not severity:
            continue
        alerts.append(
            {
                **row,
                "severity": severity,
                "available": available,
                "deficit": max(0, int(row["reorder_point"] or 0) - available),
            }
        )
    # Stable sort keeps the product-name order within a severity.
    alerts.sort(key=lambda a: ALERT_SEVERITY_ORDER[a["severity"]])
    counts = {sev: sum(1 for a in alerts if a["severity"] == sev) for sev in ALERT_SEVERITY_ORDER}
    return {
        "alerts": alerts,
        "summary": {
            "out_of_stock_count": counts["critical"],
            "critical_count": counts["high"],
            "low_stock_count": counts["high"] + counts["medium"],
            "not_tracked_count": len(not_tracked),
        },
        "products_not_tracked": not_tracked,
    }


def _upsert_stock(cur, tenant_id: str, item: StockItemIn):
    cur.execute(
        """
        INSERT INTO stock_items (id, tenant_id, warehouse_id, product_id, on_hand, reserved, reorder_point)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
        ON CONFLICT (warehouse_id, product_id) DO UPDATE
        SET on_hand = EXCLUDED.on_hand,
            reserved = EXCLUDED.reserved,
            reorder_point = EXCLUDED.reorder_point,
            updated_at = now()
        RETURNING id
        """,
        (tenant_id, item.warehouse_id, item.product_id, item.on_hand, item.reserved, item.reorder_point),
    )
    return cur.fetchone()["id"]


def _assert_stock_refs(cur, tenant_id: str, items: List[StockItemIn]):
    warehouse_ids = sorted({i.warehouse_id for i in items})
    product_ids = sorted({i.product_id for i in items})
    cur.execute(
        "SELECT COUNT(*) AS n FROM warehouses WHERE tenant_id = %s AND id = ANY(%s::uuid[])",
        (tenant_id, warehouse_ids),
    )
    if int(cur.fetchone()["n"] or 0) != len(warehouse_ids):
        raise HTTPException(status_code=400, detail="invalid warehouse_id")
    cur.execute(
        "SELECT COUNT(*) AS n FROM products WHERE tenant_id = %s AND id = ANY(%s::uuid[])",
        (tenant_id, product_ids),
    )
    if int(cur.fetchone()["n"] or 0) != len(product_ids):
        raise HTTPException(status_code=400, detail="invalid product_id")


@router.put("/stock")
def upsert_stock(data: StockItemIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    if data.reserved > data.on_hand:
        raise HTTPException(status_code=400, detail="reserved cannot exceed on_hand")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_stock_refs(cur, tenant_id, [data])
                return {"id": _upsert_stock(cur, tenant_id, data)}


@router.put("/stock/bulk")
def bulk_upsert_stock(data: BulkStockIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    for i, item in enumerate(data.items):
        if item.reserved > item.on_hand:
            raise HTTPException(status_code=400, detail=f"items[{i}]: reserved cannot exceed on_hand")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_stock_refs(cur, tenant_id, data.items)
                for item in data.items:
                    _upsert_stock(cur, tenant_id, item)
                return {"ok": True, "count": len(data.items)}


@router.get("/movements")
def list_movements(status: Optional[str] = None, ctx=Depends(require_pos_auth)):
    where = ["m.tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if status:
        where.append("m.status::text = %s")
        params.append(status.strip().upper())
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT m.id, m.type, m.status, m.warehouse_id, m.destination_warehouse_id, m.reference, m.notes,
                       m.created_at, m.posted_at,
                       (SELECT COUNT(*) FROM inventory_movement_lines l WHERE l.movement_id = m.id) AS line_count
                FROM inventory_movements m
                WHERE {' AND '.join(where)}
                ORDER BY m.created_at DESC
                LIMIT 200
                """,
                params,
            )
            return {"movements": cur.fetchall()}


@router.post("/movements")
def create_movement(data: MovementIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    if data.type == "TRANSFER":
        if not data.destination_warehouse_id:
            raise HTTPException(status_code=400, detail="destination_warehouse_id is required for transfers")
        if data.destination_warehouse_id == data.warehouse_id:
            raise HTTPException(status_code=400, detail="destination warehouse must differ from source")
    elif data.destination_warehouse_id:
        raise HTTPException(status_code=400, detail="destination_warehouse_id is only valid for transfers")
    for i, ln in enumerate(data.lines):
        if ln.quantity == 0:
            raise HTTPException(status_code=400, detail=f"lines[{i}]: quantity must be non-zero")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_warehouse(cur, tenant_id, data.warehouse_id)
                if data.destination_warehouse_id:
                    _assert_warehouse(cur, tenant_id, data.destination_warehouse_id, "destination_warehouse_id")
                cur.execute(
                    """
                    INSERT INTO inventory_movements
                      (id, tenant_id, warehouse_id, destination_warehouse_id, type, status, reference, notes, created_by)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, 'DRAFT', %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        tenant_id,
                        data.warehouse_id,
                        data.destination_warehouse_id,
                        data.type,
                        data.reference,
                        data.notes,
                        ctx["user"]["id"],
                    ),
                )
                mid = cur.fetchone()["id"]
                for ln in data.lines:
                    cur.execute(
                        """
                        INSERT INTO inventory_movement_lines (id, movement_id, product_id, quantity)
                        VALUES (gen_random_uuid(), %s, %s, %s)
                        """,
                        (mid, ln.product_id, ln.quantity),
                    )
                return {"id": mid, "status": "DRAFT"}


def _lock_draft_movement(cur, tenant_id: str, movement_id: str) -> dict:
    cur.execute(
        """
        SELECT id, type, status, warehouse_id, destination_warehouse_id
        FROM inventory_movements
        WHERE tenant_id = %s AND id = %s
        FOR UPDATE
        """,
        (tenant_id, movement_id),
    )
    mv = cur.fetchone()
    if not mv:
        raise HTTPException(status_code=404, detail="movement not found")
    if mv["status"] != "DRAFT":
        raise HTTPException(status_code=400, detail=f"movement is {str(mv['status']).lower()}")
    return mv


def _apply_delta(cur, tenant_id: str, warehouse_id, product_id, delta: int, product_name: str):
    cur.execute(
        """
        SELECT id, on_hand, reserved FROM stock_items
        WHERE warehouse_id = %s AND product_id = %s
        FOR UPDATE
        """,
        (warehouse_id, product_id),
    )
    row = cur.fetchone()
    available = int(row["on_hand"]) - int(row["reserved"]) if row else 0
    if delta < 0 and available + delta < 0:
        raise HTTPException(status_code=400, detail=f"insufficient stock for {product_name}")
    if row:
        cur.execute(
            "UPDATE stock_items SET on_hand = on_hand + %s, updated_at = now() WHERE id = %s",
            (delta, row["id"]),
        )
        return
    cur.execute(
        """
        INSERT INTO stock_items (id, tenant_id, warehouse_id, product_id, on_hand, reserved, reorder_point)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, 0, 0)
        """,
        (tenant_id, warehouse_id, product_id, delta),
    )


@router.post("/movements/{movement_id}/post")
def post_movement(movement_id: str, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                mv = _lock_draft_movement(cur, tenant_id, movement_id)
                cur.execute(
                    """
                    SELECT l.product_id, l.quantity, p.name AS product_name
                    FROM inventory_movement_lines l
                    JOIN products p ON p.id = l.product_id
                    WHERE l.movement_id = %s
                    ORDER BY l.product_id
                    """,
                    (movement_id,),
                )
                lines = cur.fetchall()
                for ln in lines:
                    delta = movement_delta(mv["type"], ln["quantity"])
                    _apply_delta(cur, tenant_id, mv["warehouse_id"], ln["product_id"], delta, ln["product_name"])
                    if mv["type"] == "TRANSFER":
                        _apply_delta(
                            cur, tenant_id, mv["destination_warehouse_id"], ln["product_id"], -delta, ln["product_name"]
                        )
                cur.execute(
                    "UPDATE inventory_movements SET status = 'POSTED', posted_at = now() WHERE id = %s",
                    (movement_id,),
                )
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'inventory_movement_post', 'inventory_movement', %s, %s::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], movement_id, json.dumps({"type": mv["type"], "lines": len(lines)})),
                )
                return {"ok": True, "status": "POSTED"}


@router.post("/movements/{movement_id}/cancel")
def cancel_movement(movement_id: str, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _lock_draft_movement(cur, tenant_id, movement_id)
                cur.execute("UPDATE inventory_movements SET status = 'CANCELLED' WHERE id = %s", (movement_id,))
                return {"ok": True, "status": "CANCELLED"}
