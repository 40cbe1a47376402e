from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..order_totals import format_money, round_half_up
from ..validation import MANAGER_ROLES, Email, InvoiceStatus

router = APIRouter(prefix="/pos/tenants/{tenant}/invoices", tags=["pos-invoices"])
DEFAULT_INVOICE_TAX_RATE = Decimal("0.05")
DEFAULT_DUE_DAYS = 7


class InvoiceLineIn(BaseModel):
    product_id: Optional[str] = None
    description: str = Field(min_length=1, max_length=300)
    quantity: int = Field(ge=1)
    unit_price_cents: int = Field(ge=0)


class InvoiceIn(BaseModel):
    customer_id: Optional[str] = None
    customer_name: str = Field(min_length=1, max_length=200)
    customer_email: Optional[Email] = None
    due_at: Optional[datetime] = None
    tax_rate: Decimal = Field(default=DEFAULT_INVOICE_TAX_RATE, ge=0, le=1)
    notes: Optional[str] = Field(default=None, max_length=1000)
    lines: List[InvoiceLineIn] = Field(min_length=1)


class InvoiceUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    due_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


def invoice_totals(lines: List[InvoiceLineIn], tax_rate: Decimal) -> dict:
    subtotal = sum(ln.quantity * ln.unit_price_cents for ln in lines)
    tax = round_half_up(Decimal(subtotal) * Decimal(str(tax_rate)))
    return {"subtotal_cents": subtotal, "tax_cents": tax, "total_cents": subtotal + tax}


def format_invoice_number(seq: int) -> str:
    return f"INV-{seq:06d}"


@router.get("")
def list_invoices(status: Optional[str] = None, ctx=Depends(require_pos_auth)):
    where = ["tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if status:
        where.append("status::text = %s")
        params.append(status.strip().upper())
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT id, number, status, customer_id, customer_name, customer_email, issued_at, due_at,
                       subtotal_cents, tax_cents, total_cents, currency
                FROM invoices
                WHERE {' AND '.join(where)}
                ORDER BY issued_at DESC
                LIMIT 200
                """,
                params,
            )
            return {"invoices": cur.fetchall()}


@router.post("")
def create_invoice(data: InvoiceIn, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    tenant_id = ctx["tenant_id"]
    totals = invoice_totals(data.lines, data.tax_rate)
    issued_at = datetime.now(timezone.utc)
    due_at = data.due_at or (issued_at + timedelta(days=DEFAULT_DUE_DAYS))
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                if data.customer_id:
                    cur.execute(
                        "SELECT 1 FROM customers WHERE tenant_id = %s AND id = %s",
                        (tenant_id, data.customer_id),
                    )
                    if not cur.fetchone():
                        raise HTTPException(status_code=400, detail="invalid customer_id")
                # Serialize numbering per tenant.
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"invoices:{tenant_id}",))
                cur.execute(
                    """
                    SELECT COALESCE(MAX(substring(number FROM '^INV-([0-9]+)$')::bigint), 0) AS last_seq
                    FROM invoices
                    WHERE tenant_id = %s
                    """,
                    (tenant_id,),
                )
                number = format_invoice_number(int(cur.fetchone()["last_seq"] or 0) + 1)
                cur.execute(
                    """
                    INSERT INTO invoices
                      (id, tenant_id, number, status, customer_id, customer_name, customer_email, issued_at, due_at,
                       subtotal_cents, tax_cents, total_cents, currency, notes)
                    VALUES
                      (gen_random_uuid(), %s, %s, 'DRAFT', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        tenant_id,
                        number,
                        data.customer_id,
                        data.customer_name.strip(),
                        data.customer_email,
                        issued_at,
                        due_at,
                        totals["subtotal_cents"],
                        totals["tax_cents"],
                        totals["total_cents"],
                        ctx["tenant_currency"],
                        data.notes,
                    ),
                )
                inv_id = cur.fetchone()["id"]
                for ln in data.lines:
                    cur.execute(
                        """
                        INSERT INTO invoice_lines
                          (id, invoice_id, product_id, description, quantity, unit_price_cents, line_total_cents)
                        VALUES
                          (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            inv_id,
                            ln.product_id,
                            ln.description.strip(),
                            ln.quantity,
                            ln.unit_price_cents,
                            ln.quantity * ln.unit_price_cents,
                        ),
                    )
                return {"id": inv_id, "number": number, **totals}


@router.get("/{invoice_id}")
def get_invoice(invoice_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, number, status, customer_id, customer_name, customer_email, issued_at, due_at,
                       subtotal_cents, tax_cents, total_cents, currency, notes
                FROM invoices
                WHERE tenant_id = %s AND id = %s
                """,
                (ctx["tenant_id"], invoice_id),
            )
            inv = cur.fetchone()
            if not inv:
                raise HTTPException(status_code=404, detail="invoice not found")
            cur.execute(
                """
                SELECT id, product_id, description, quantity, unit_price_cents, line_total_cents
                FROM invoice_lines
                WHERE invoice_id = %s
                ORDER BY id
                """,
                (invoice_id,),
            )
            return {
                "invoice": {
                    **inv,
                    "total_display": format_money(inv["total_cents"], inv["currency"]),
                    "lines": cur.fetchall(),
                }
            }


@router.patch("/{invoice_id}")
def update_invoice(invoice_id: str, data: InvoiceUpdate, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    fields = []
    params = []
    for k in ("status", "due_at", "notes"):
        if k in patch:
            fields.append(f"{k} = %s")
            params.append(patch[k])
    params.extend([ctx["tenant_id"], invoice_id])
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE invoices
                    SET {', '.join(fields)}
                    WHERE tenant_id = %s AND id = %s
                    RETURNING id, status
                    """,
                    params,
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="invoice not found")
                return {"ok": True, "status": row["status"]}


@router.delete("/{invoice_id}")
def delete_invoice(invoice_id: str, ctx=Depends(require_pos_role(*MANAGER_ROLES))):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT status FROM invoices WHERE tenant_id = %s AND id = %s FOR UPDATE",
                    (ctx["tenant_id"], invoice_id),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="invoice not found")
                if row["status"] != "DRAFT":
                    raise HTTPException(status_code=400, detail="only draft invoices can be deleted")
                cur.execute("DELETE FROM invoice_lines WHERE invoice_id = %s", (invoice_id,))
                cur.execute("DELETE FROM invoices WHERE id = %s", (invoice_id,))
                return {"ok": True}
