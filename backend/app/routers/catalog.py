from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..validation import ADMIN_ROLES, MANAGER_ROLES, CurrencyCode

router = APIRouter(prefix="/pos/tenants/{tenant}", tags=["pos-catalog"])


class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    sku: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=1000)
    category_id: Optional[str] = None
    price_cents: int = Field(ge=0)
    cost_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[CurrencyCode] = None
    is_active: bool = True
    initial_stock: int = Field(default=0, ge=0)
    reorder_point: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    sku: Optional[str] = Field(default=None, max_length=64)
    description: Optional[str] = Field(default=None, max_length=1000)
    category_id: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0)
    cost_cents: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    sort_order: int = 0


def ensure_default_warehouse(cur, tenant_id: str):
    cur.execute(
        "SELECT id FROM warehouses WHERE tenant_id = %s AND code = 'MAIN'",
        (tenant_id,),
    )
    row = cur.fetchone()
    if row:
        return row["id"]
    cur.execute(
        """
        INSERT INTO warehouses (id, tenant_id, name, code)
        VALUES (gen_random_uuid(), %s, 'Main Warehouse', 'MAIN')
        RETURNING id
        """,
        (tenant_id,),
    )
    return cur.fetchone()["id"]


def _assert_category(cur, tenant_id: str, category_id: Optional[str]):
    if not category_id:
        return
    cur.execute("SELECT 1 FROM categories WHERE tenant_id = %s AND id = %s", (tenant_id, category_id))
    if not cur.fetchone():
        raise HTTPException(status_code=400, detail="invalid category_id")


def _assert_unique_name(cur, tenant_id: str, name: str, exclude_id: Optional[str] = None):
    cur.execute(
        """
        SELECT id FROM products
        WHERE tenant_id = %s AND lower(name) = lower(%s) AND (%s::uuid IS NULL OR id <> %s::uuid)
        """,
        (tenant_id, name, exclude_id, exclude_id),
    )
    if cur.fetchone():
        raise HTTPException(status_code=409, detail="product name already exists")


@router.get("/products")
def list_products(
    category_id: Optional[str] = None,
    active_only: bool = False,
    q: Optional[str] = None,
    ctx=Depends(require_pos_auth),
):
    where = ["p.tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if category_id:
        where.append("p.category_id = %s")
        params.append(category_id)
    if active_only:
        where.append("p.is_active = true")
    if q and q.strip():
        where.append("(p.name ILIKE %s OR p.sku ILIKE %s)")
        needle = f"%{q.strip()}%"
        params.extend([needle, needle])
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT p.id, p.name, p.sku, p.description, p.category_id, c.name AS category_name,
                       p.price_cents, p.cost_cents, p.currency, p.is_active, p.updated_at
                FROM products p
                LEFT JOIN categories c ON c.id = p.category_id
                WHERE {' AND '.join(where)}
                ORDER BY p.name
                """,
                params,
            )
            return {"products": cur.fetchall()}


@router.post("/products")
def create_product(data: ProductIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    name = data.name.strip()
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_unique_name(cur, tenant_id, name)
                _assert_category(cur, tenant_id, data.category_id)
                cur.execute(
                    """
                    INSERT INTO products
                      (id, tenant_id, category_id, name, sku, description, price_cents, cost_cents, currency, is_active)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        tenant_id,
                        data.category_id,
                        name,
                        (data.sku or "").strip() or None,
                        data.description,
                        data.price_cents,
                        data.cost_cents,
                        data.currency or ctx["tenant_currency"],
                        data.is_active,
                    ),
                )
                pid = cur.fetchone()["id"]
                warehouse_id = ensure_default_warehouse(cur, tenant_id)
                cur.execute(
                    """
                    INSERT INTO stock_items (id, tenant_id, warehouse_id, product_id, on_hand, reserved, reorder_point)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, 0, %s)
                    """,
                    (tenant_id, warehouse_id, pid, data.initial_stock, data.reorder_point),
                )
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'product_create', 'product', %s, %s::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], pid, json.dumps({"name": name, "price_cents": data.price_cents})),
                )
                return {"id": pid}


@router.patch("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    tenant_id = ctx["tenant_id"]
    fields = []
    params = []
    for k in ("name", "sku", "description", "category_id", "price_cents", "cost_cents", "is_active"):
        if k not in patch:
            continue
        v = patch[k]
        if k == "name":
            v = (v or "").strip()
            if not v:
                raise HTTPException(status_code=400, detail="name cannot be empty")
        fields.append(f"{k} = %s")
        params.append(v)
    fields.append("updated_at = now()")
    params.extend([tenant_id, product_id])
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                if "name" in patch:
                    _assert_unique_name(cur, tenant_id, patch["name"].strip(), exclude_id=product_id)
                if patch.get("category_id"):
                    _assert_category(cur, tenant_id, patch["category_id"])
                cur.execute(
                    f"""
                    UPDATE products
                    SET {', '.join(fields)}
                    WHERE tenant_id = %s AND id = %s
                    RETURNING id
                    """,
                    params,
                )
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="product not found")
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'product_update', 'product', %s, %s::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], product_id, json.dumps(patch, default=str)),
                )
                return {"ok": True}


@router.delete("/products/{product_id}")
def delete_product(product_id: str, ctx=Depends(require_pos_role(*ADMIN_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM products WHERE tenant_id = %s AND id = %s FOR UPDATE", (tenant_id, product_id))
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="product not found")
                cur.execute("SELECT 1 FROM pos_order_items WHERE product_id = %s LIMIT 1", (product_id,))
                if cur.fetchone():
                    # Sold products stay for order history.
                    cur.execute(
                        "UPDATE products SET is_active = false, updated_at = now() WHERE id = %s",
                        (product_id,),
                    )
                    action, result = "product_deactivate", {"ok": True, "deactivated": True}
                else:
                    cur.execute("DELETE FROM stock_items WHERE product_id = %s", (product_id,))
                    cur.execute("DELETE FROM products WHERE id = %s", (product_id,))
                    action, result = "product_delete", {"ok": True, "deactivated": False}
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, %s, 'product', %s, '{}'::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], action, product_id),
                )
                return result


@router.get("/categories")
def list_categories(ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT c.id, c.name, c.sort_order,
                       (SELECT COUNT(*) FROM products p WHERE p.category_id = c.id) AS product_count
                FROM categories c
                WHERE c.tenant_id = %s
                ORDER BY c.sort_order, c.name
                """,
                (ctx["tenant_id"],),
            )
            return {"categories": cur.fetchall()}


@router.post("/categories")
def create_category(data: CategoryIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT 1 FROM categories WHERE tenant_id = %s AND lower(name) = lower(%s)",
                    (tenant_id, name),
                )
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail="category already exists")
                cur.execute(
                    """
                    INSERT INTO categories (id, tenant_id, name, sort_order)
                    VALUES (gen_random_uuid(), %s, %s, %s)
                    RETURNING id
                    """,
                    (tenant_id, name, data.sort_order),
                )
                return {"id": cur.fetchone()["id"]}
