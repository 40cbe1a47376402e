from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..tenant_slug import build_tenant_host
from ..validation import ADMIN_ROLES, ConnectionStatus, CurrencyCode, TenantIndustry, TenantTheme

router = APIRouter(prefix="/pos/tenants/{tenant}/settings", tags=["pos-settings"])
PAYMENT_PROVIDERS = ("CASH", "BANK", "PAYPAL", "CARD")


class TenantSettingsUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    industry: Optional[TenantIndustry] = None
    theme: Optional[TenantTheme] = None
    currency: Optional[CurrencyCode] = None
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)


class PaymentConnectionIn(BaseModel):
    status: Optional[ConnectionStatus] = None
    display_name: Optional[str] = Field(default=None, max_length=100)


@router.get("")
def get_settings(ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, name, slug, industry, theme, currency, tax_rate FROM tenants WHERE id = %s",
                (ctx["tenant_id"],),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="tenant not found")
            return {"settings": {**row, "host": build_tenant_host(row["slug"])}}


@router.patch("")
def update_settings(data: TenantSettingsUpdate, ctx=Depends(require_pos_role(*ADMIN_ROLES))):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    fields = []
    params = []
    for k in ("name", "industry", "theme", "currency", "tax_rate"):
        if k in patch:
            if patch[k] is None and k != "tax_rate":
                raise HTTPException(status_code=400, detail=f"{k} cannot be null")
            fields.append(f"{k} = %s")
            params.append(patch[k].strip() if isinstance(patch[k], str) else patch[k])
    fields.append("updated_at = now()")
    params.append(ctx["tenant_id"])
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE tenants
                    SET {', '.join(fields)}
                    WHERE id = %s
                    RETURNING id, name, slug, industry, theme, currency, tax_rate
                    """,
                    params,
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="tenant not found")
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'tenant_settings_update', 'tenant', %s, %s::jsonb)
                    """,
                    (ctx["tenant_id"], ctx["user"]["id"], ctx["tenant_id"], json.dumps(patch, default=str)),
                )
                return {"settings": row}


@router.get("/payments")
def list_payment_connections(ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, provider, status, display_name, updated_at
                FROM payment_connections
                WHERE tenant_id = %s
                ORDER BY provider
                """,
                (ctx["tenant_id"],),
            )
            return {"connections": cur.fetchall()}


@router.put("/payments/{provider}")
def update_payment_connection(
    provider: str, data: PaymentConnectionIn, ctx=Depends(require_pos_role(*ADMIN_ROLES))
):
    provider = provider.strip().upper()
    if provider not in PAYMENT_PROVIDERS:
        raise HTTPException(status_code=400, detail="invalid provider")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO payment_connections (id, tenant_id, provider, status, display_name)
                    VALUES (gen_random_uuid(), %s, %s, COALESCE(%s::connection_status, 'DISCONNECTED'), %s)
                    ON CONFLICT (tenant_id, provider) DO UPDATE
                    SET status = COALESCE(%s::connection_status, payment_connections.status),
                        display_name = COALESCE(%s, payment_connections.display_name),
                        updated_at = now()
                    RETURNING id, provider, status, display_name
                    """,
                    (tenant_id, provider, data.status, data.display_name, data.status, data.display_name),
                )
                return {"connection": cur.fetchone()}
