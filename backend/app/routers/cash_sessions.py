from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth

router = APIRouter(prefix="/pos/tenants/{tenant}/cash-sessions", tags=["pos-cash-sessions"])


class CashSessionOpenIn(BaseModel):
    opening_cash_cents: int = Field(default=0)
    notes: Optional[str] = Field(default=None, max_length=500)


class CashSessionCloseIn(BaseModel):
    closing_cash_cents: int
    notes: Optional[str] = Field(default=None, max_length=500)


def _assert_non_negative_cash(amount_cents: int, context: str) -> None:
    if int(amount_cents or 0) < 0:
        raise HTTPException(status_code=400, detail=f"{context} cash must be >= 0")


def _expected_cash(cur, tenant_id: str, opened_at, opening_cash_cents: int, closed_at=None) -> int:
    cur.execute(
        """
        SELECT COALESCE(SUM(amount_cents), 0) AS cash_in
        FROM pos_payments
        WHERE tenant_id = %s AND provider = 'CASH' AND status = 'CAPTURED'
          AND created_at >= %s AND (%s::timestamptz IS NULL OR created_at <= %s::timestamptz)
        """,
        (tenant_id, opened_at, closed_at, closed_at),
    )
    return int(opening_cash_cents or 0) + int(cur.fetchone()["cash_in"] or 0)


@router.get("")
def list_cash_sessions(ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, status, opened_by, closed_by, opened_at, closed_at,
                       opening_cash_cents, closing_cash_cents, expected_cash_cents, difference_cents, notes
                FROM cash_sessions
                WHERE tenant_id = %s
                ORDER BY opened_at DESC
                LIMIT 50
                """,
                (tenant_id,),
            )
            rows = cur.fetchall()
            for r in rows:
                if r["status"] == "OPEN":
                    r["expected_cash_cents"] = _expected_cash(cur, tenant_id, r["opened_at"], r["opening_cash_cents"])
            return {"sessions": rows}


@router.post("")
def open_cash_session(data: CashSessionOpenIn, ctx=Depends(require_pos_auth)):
    _assert_non_negative_cash(data.opening_cash_cents, "opening")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM cash_sessions WHERE tenant_id = %s AND status = 'OPEN' FOR UPDATE",
                    (tenant_id,),
                )
                if cur.fetchone():
                    raise HTTPException(status_code=400, detail="a cash session is already open")
                cur.execute(
                    """
                    INSERT INTO cash_sessions (id, tenant_id, status, opened_by, opened_at, opening_cash_cents, notes)
                    VALUES (gen_random_uuid(), %s, 'OPEN', %s, now(), %s, %s)
                    RETURNING id, status, opened_at, opening_cash_cents
                    """,
                    (tenant_id, ctx["user"]["id"], data.opening_cash_cents, data.notes),
                )
                return {"session": cur.fetchone()}


@router.get("/{session_id}")
def get_cash_session(session_id: str, ctx=Depends(require_pos_auth)):
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, status, opened_by, closed_by, opened_at, closed_at,
                       opening_cash_cents, closing_cash_cents, expected_cash_cents, difference_cents, notes
                FROM cash_sessions
                WHERE tenant_id = %s AND id = %s
                """,
                (tenant_id, session_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="cash session not found")
            if row["status"] == "OPEN":
                row["expected_cash_cents"] = _expected_cash(cur, tenant_id, row["opened_at"], row["opening_cash_cents"])
            return {"session": row}


@router.post("/{session_id}/close")
def close_cash_session(session_id: str, data: CashSessionCloseIn, ctx=Depends(require_pos_auth)):
    _assert_non_negative_cash(data.closing_cash_cents, "closing")
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, opened_at, opening_cash_cents, notes
                    FROM cash_sessions
                    WHERE tenant_id = %s AND id = %s AND status = 'OPEN'
                    FOR UPDATE
                    """,
                    (tenant_id, session_id),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="open cash session not found")
                expected = _expected_cash(cur, tenant_id, row["opened_at"], row["opening_cash_cents"])
                difference = int(data.closing_cash_cents) - expected
                cur.execute(
                    """
                    UPDATE cash_sessions
                    SET status = 'CLOSED', closed_at = now(), closed_by = %s,
                        closing_cash_cents = %s, expected_cash_cents = %s, difference_cents = %s,
                        notes = COALESCE(%s, notes)
                    WHERE id = %s
                    RETURNING id, status, opened_at, closed_at, opening_cash_cents, closing_cash_cents,
                              expected_cash_cents, difference_cents
                    """,
                    (ctx["user"]["id"], data.closing_cash_cents, expected, difference, data.notes, session_id),
                )
                closed = cur.fetchone()
                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
                    VALUES (gen_random_uuid(), %s, %s, 'cash_session_close', 'cash_session', %s, %s::jsonb)
                    """,
                    (
                        tenant_id,
                        ctx["user"]["id"],
                        session_id,
                        json.dumps({"expected_cash_cents": expected, "difference_cents": difference}),
                    ),
                )
                return {"session": closed}
