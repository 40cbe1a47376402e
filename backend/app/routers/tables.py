from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..order_status import OPEN_ORDER_STATUSES
from ..validation import MANAGER_ROLES

router = APIRouter(prefix="/pos/tenants/{tenant}/tables", tags=["pos-tables"])

MAIN_FLOOR = "Main Floor"
TERRACE = "Terrace"


class GenerateTablesIn(BaseModel):
    main_floor_count: int = Field(default=12, ge=0, le=50)
    include_terrace: bool = True
    terrace_count: int = Field(default=6, ge=0, le=30)
    clear_existing: bool = False


def main_floor_layout(count: int) -> list:
    # Four columns; every third table seats six.
    out = []
    for idx in range(count):
        col, row = idx % 4, idx // 4
        out.append(
            {
                "name": f"T{idx + 1}",
                "capacity": 6 if idx % 3 == 0 else 4,
                "x": 70 + col * 180,
                "y": 70 + row * 150,
                "width": 150,
                "height": 110,
                "shape": "ROUND" if idx % 2 == 0 else "RECT",
            }
        )
    return out


def terrace_layout(count: int) -> list:
    out = []
    for idx in range(count):
        col, row = idx % 3, idx // 3
        out.append(
            {
                "name": f"P{idx + 1}",
                "capacity": 4,
                "x": 90 + col * 200,
                "y": 90 + row * 170,
                "width": 160,
                "height": 120,
                "shape": "ROUND",
            }
        )
    return out


@router.get("")
def list_tables(ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, name, sort_order FROM pos_floors WHERE tenant_id = %s ORDER BY sort_order, name",
                (tenant_id,),
            )
            floors = [dict(f, tables=[]) for f in cur.fetchall()]
            cur.execute(
                """
                SELECT t.id, t.floor_id, t.name, t.capacity, t.x, t.y, t.width, t.height, t.shape,
                       (SELECT o.id FROM pos_orders o
                        WHERE o.table_id = t.id AND o.status::text = ANY(%s)
                        ORDER BY o.opened_at DESC LIMIT 1) AS open_order_id
                FROM pos_tables t
                WHERE t.tenant_id = %s AND t.is_active = true
                ORDER BY t.name
                """,
                (list(OPEN_ORDER_STATUSES), tenant_id),
            )
            by_floor = {str(f["id"]): f for f in floors}
            for t in cur.fetchall():
                floor = by_floor.get(str(t["floor_id"]))
                if floor is not None:
                    floor["tables"].append(t)
            return {"floors": floors}


def _assert_no_open_table_orders(cur, tenant_id: str):
    cur.execute(
        """
        SELECT COUNT(*) AS n FROM pos_orders
        WHERE tenant_id = %s AND table_id IS NOT NULL AND status::text = ANY(%s)
        """,
        (tenant_id, list(OPEN_ORDER_STATUSES)),
    )
    if int(cur.fetchone()["n"] or 0) > 0:
        raise HTTPException(status_code=400, detail="close open table orders before removing tables")


def _clear_tables(cur, tenant_id: str):
    # Closed orders keep their history but lose the table link.
    cur.execute("UPDATE pos_orders SET table_id = NULL WHERE tenant_id = %s AND table_id IS NOT NULL", (tenant_id,))
    cur.execute("DELETE FROM pos_tables WHERE tenant_id = %s", (tenant_id,))
    cur.execute("DELETE FROM pos_floors WHERE tenant_id = %s", (tenant_id,))


def _ensure_floor(cur, tenant_id: str, name: str, sort_order: int):
    cur.execute("SELECT id FROM pos_floors WHERE tenant_id = %s AND name = %s", (tenant_id, name))
    row = cur.fetchone()
    if row:
        return row["id"]
    cur.execute(
        """
        INSERT INTO pos_floors (id, tenant_id, name, sort_order)
        VALUES (gen_random_uuid(), %s, %s, %s)
        RETURNING id
        """,
        (tenant_id, name, sort_order),
    )
    return cur.fetchone()["id"]


def _insert_tables(cur, tenant_id: str, floor_id, layout: list) -> int:
    for t in layout:
        cur.execute(
            """
            INSERT INTO pos_tables (id, tenant_id, floor_id, name, capacity, x, y, width, height, shape, is_active)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, true)
            """,
            (tenant_id, floor_id, t["name"], t["capacity"], t["x"], t["y"], t["width"], t["height"], t["shape"]),
        )
    return len(layout)


@router.post("/generate")
def generate_tables(data: GenerateTablesIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                if data.clear_existing:
                    _assert_no_open_table_orders(cur, tenant_id)
                    _clear_tables(cur, tenant_id)
                created = 0
                if data.main_floor_count > 0:
                    floor_id = _ensure_floor(cur, tenant_id, MAIN_FLOOR, 0)
                    created += _insert_tables(cur, tenant_id, floor_id, main_floor_layout(data.main_floor_count))
                if data.include_terrace and data.terrace_count > 0:
                    floor_id = _ensure_floor(cur, tenant_id, TERRACE, 10)
                    created += _insert_tables(cur, tenant_id, floor_id, terrace_layout(data.terrace_count))
                return {"tables_created": created}


@router.delete("")
def delete_all_tables(ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_no_open_table_orders(cur, tenant_id)
                _clear_tables(cur, tenant_id)
                return {"ok": True}
