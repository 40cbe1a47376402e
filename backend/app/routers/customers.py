from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..validation import MANAGER_ROLES, Email

router = APIRouter(prefix="/pos/tenants/{tenant}/customers", tags=["pos-customers"])
MAX_PAGE_SIZE = 100


class CustomerIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: Optional[Email] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    notes: Optional[str] = Field(default=None, max_length=1000)


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[Email] = None
    phone: Optional[str] = Field(default=None, max_length=40)
    notes: Optional[str] = Field(default=None, max_length=1000)


def _assert_email_free(cur, tenant_id: str, email: Optional[str], exclude_id: Optional[str] = None):
    if not email:
        return
    cur.execute(
        """
        SELECT 1 FROM customers
        WHERE tenant_id = %s AND lower(email) = %s AND (%s::uuid IS NULL OR id <> %s::uuid)
        """,
        (tenant_id, email, exclude_id, exclude_id),
    )
    if cur.fetchone():
        raise HTTPException(status_code=409, detail="a customer with this email already exists")


@router.get("")
def list_customers(q: Optional[str] = None, page: int = 1, limit: int = 20, ctx=Depends(require_pos_auth)):
    page = max(1, page)
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    where = ["tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if q and q.strip():
        needle = f"%{q.strip()}%"
        where.append("(name ILIKE %s OR email ILIKE %s OR phone ILIKE %s)")
        params.extend([needle, needle, needle])
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) AS n FROM customers WHERE {' AND '.join(where)}", params)
            total = int(cur.fetchone()["n"] or 0)
            cur.execute(
                f"""
                SELECT id, name, email, phone, notes, created_at
                FROM customers
                WHERE {' AND '.join(where)}
                ORDER BY name, id
                LIMIT %s OFFSET %s
                """,
                params + [limit, (page - 1) * limit],
            )
            return {
                "customers": cur.fetchall(),
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            }


@router.post("")
def create_customer(data: CustomerIn, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_email_free(cur, tenant_id, data.email)
                cur.execute(
                    """
                    INSERT INTO customers (id, tenant_id, name, email, phone, notes)
                    VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (tenant_id, data.name.strip(), data.email, (data.phone or "").strip() or None, data.notes),
                )
                return {"id": cur.fetchone()["id"]}


@router.get("/{customer_id}")
def get_customer(customer_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT c.id, c.name, c.email, c.phone, c.notes, c.created_at,
                       COUNT(o.id) AS order_count,
                       COALESCE(SUM(o.total_cents) FILTER (WHERE o.status = 'PAID'), 0) AS lifetime_cents
                FROM customers c
                LEFT JOIN pos_orders o ON o.customer_id = c.id
                WHERE c.tenant_id = %s AND c.id = %s
                GROUP BY c.id
                """,
                (ctx["tenant_id"], customer_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="customer not found")
            return {"customer": row}


@router.patch("/{customer_id}")
def update_customer(customer_id: str, data: CustomerUpdate, ctx=Depends(require_pos_auth)):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    tenant_id = ctx["tenant_id"]
    fields = []
    params = []
    for k in ("name", "email", "phone", "notes"):
        if k in patch:
            fields.append(f"{k} = %s")
            params.append(patch[k].strip() if isinstance(patch[k], str) else patch[k])
    fields.append("updated_at = now()")
    params.extend([tenant_id, customer_id])
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_email_free(cur, tenant_id, patch.get("email"), exclude_id=customer_id)
                cur.execute(
                    f"""
                    UPDATE customers
                    SET {', '.join(fields)}
                    WHERE tenant_id = %s AND id = %s
                    RETURNING id
                    """,
                    params,
                )
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="customer not found")
                return {"ok": True}


@router.delete("/{customer_id}")
def delete_customer(customer_id: str, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE pos_orders SET customer_id = NULL WHERE tenant_id = %s AND customer_id = %s",
                    (tenant_id, customer_id),
                )
                cur.execute(
                    "DELETE FROM customers WHERE tenant_id = %s AND id = %s RETURNING id",
                    (tenant_id, customer_id),
                )
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="customer not found")
                return {"ok": True}
