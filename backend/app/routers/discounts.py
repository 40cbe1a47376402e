from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..discount_math import MAX_PERCENT_BPS
from ..validation import MANAGER_ROLES, DiscountCode, DiscountScope, DiscountType

router = APIRouter(prefix="/pos/tenants/{tenant}/discounts", tags=["pos-discounts"])


class DiscountIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    code: Optional[DiscountCode] = None
    type: DiscountType
    # Cents for FIXED, basis points for PERCENTAGE, ignored for BOGO.
    value: int = Field(ge=0)
    scope: DiscountScope = "ORDER"
    category_ids: List[str] = []
    product_ids: List[str] = []
    min_order_cents: Optional[int] = Field(default=None, ge=0)
    max_usage: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True


class DiscountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    value: Optional[int] = Field(default=None, ge=0)
    min_order_cents: Optional[int] = Field(default=None, ge=0)
    max_usage: Optional[int] = Field(default=None, ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None


def _validate_discount(type_: str, value: Optional[int], scope: str, category_ids, product_ids, starts_at, ends_at):
    if type_ == "PERCENTAGE" and value is not None and value > MAX_PERCENT_BPS:
        raise HTTPException(status_code=400, detail="percentage value cannot exceed 10000 basis points")
    if scope == "CATEGORY" and not category_ids:
        raise HTTPException(status_code=400, detail="category_ids are required for category discounts")
    if scope == "PRODUCT" and not product_ids:
        raise HTTPException(status_code=400, detail="product_ids are required for product discounts")
    if starts_at and ends_at and ends_at < starts_at:
        raise HTTPException(status_code=400, detail="ends_at must be after starts_at")


@router.get("")
def list_discounts(active_only: bool = False, code: Optional[str] = None, ctx=Depends(require_pos_auth)):
    where = ["tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if active_only:
        where.append("is_active = true")
    if code:
        where.append("code = %s")
        params.append(code.strip().upper())
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, name, code, type, value, scope, category_ids, product_ids,
                       min_order_cents, max_usage, usage_count, starts_at, ends_at, is_active, created_at
                FROM discounts
                WHERE {' AND '.join(where)}
                ORDER BY created_at DESC
                """,
                params,
            )
            return {"discounts": cur.fetchall()}


@router.post("")
def create_discount(data: DiscountIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    _validate_discount(data.type, data.value, data.scope, data.category_ids, data.product_ids, data.starts_at, data.ends_at)
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                if data.code:
                    cur.execute(
                        "SELECT 1 FROM discounts WHERE tenant_id = %s AND code = %s",
                        (tenant_id, data.code),
                    )
                    if cur.fetchone():
                        raise HTTPException(status_code=409, detail="discount code already exists")
                cur.execute(
                    """
                    INSERT INTO discounts
                      (id, tenant_id, name, code, type, value, scope, category_ids, product_ids,
                       min_order_cents, max_usage, starts_at, ends_at, is_active)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s::uuid[], %s::uuid[], %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        tenant_id,
                        data.name.strip(),
                        data.code,
                        data.type,
                        data.value,
                        data.scope,
                        data.category_ids,
                        data.product_ids,
                        data.min_order_cents,
                        data.max_usage,
                        data.starts_at,
                        data.ends_at,
                        data.is_active,
                    ),
                )
                did = cur.fetchone()["id"]
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'discount_create', 'discount', %s, %s::jsonb)
                    """,
                    (tenant_id, ctx["user"]["id"], did, json.dumps({"name": data.name, "code": data.code, "type": data.type})),
                )
                return {"id": did}


@router.patch("/{discount_id}")
def update_discount(discount_id: str, data: DiscountUpdate, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT type, scope, category_ids, product_ids, starts_at, ends_at
                    FROM discounts
                    WHERE tenant_id = %s AND id = %s
                    FOR UPDATE
                    """,
                    (tenant_id, discount_id),
                )
                current = cur.fetchone()
                if not current:
                    raise HTTPException(status_code=404, detail="discount not found")
                _validate_discount(
                    current["type"],
                    patch.get("value"),
                    current["scope"],
                    current["category_ids"],
                    current["product_ids"],
                    patch.get("starts_at", current["starts_at"]),
                    patch.get("ends_at", current["ends_at"]),
                )
                fields = []
                params = []
                for k in ("name", "value", "min_order_cents", "max_usage", "starts_at", "ends_at", "is_active"):
                    if k in patch:
                        fields.append(f"{k} = %s")
                        params.append(patch[k].strip() if k == "name" and patch[k] else patch[k])
                params.extend([tenant_id, discount_id])
                cur.execute(
                    f"""
                    UPDATE discounts
                    SET {', '.join(fields)}
                    WHERE tenant_id = %s AND id = %s
                    """,
                    params,
                )
                return {"ok": True}


@router.delete("/{discount_id}")
def deactivate_discount(discount_id: str, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    # Applied discounts keep pointing at the row, so it is only switched off.
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "UPDATE discounts SET is_active = false WHERE tenant_id = %s AND id = %s RETURNING id",
                    (ctx["tenant_id"], discount_id),
                )
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="discount not found")
                return {"ok": True}
