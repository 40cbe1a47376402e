from fastapi import APIRouter, Depends, HTTPException
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
import calendar

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..order_totals import format_money
from ..validation import MANAGER_ROLES

router = APIRouter(prefix="/pos/tenants/{tenant}/reports", tags=["pos-reports"])

REPORT_PERIODS = ("today", "yesterday", "week", "month", "year", "custom")
GROUP_BY_FORMATS = {
    "hour": "YYYY-MM-DD HH24:00",
    "day": "YYYY-MM-DD",
    "week": "YYYY-MM-DD",
    "month": "YYYY-MM",
}
TOP_PRODUCTS_LIMIT = 10


def _months_back(d: datetime, months: int) -> datetime:
    y, m = divmod(d.month - 1 - months, 12)
    year, month = d.year + y, m + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def resolve_report_range(
    period: str,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    """
    Turn a report period into a [start, end] window.

    Rolling periods end at `now` and start at midnight of the matching past day.
    `yesterday` covers the whole previous day. `custom` requires both bounds.
    """
    period = (period or "today").strip().lower()
    if period not in REPORT_PERIODS:
        raise HTTPException(status_code=400, detail="invalid period")
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "custom":
        if not start or not end:
            raise HTTPException(status_code=400, detail="start and end are required for custom period")
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        if end < start:
            raise HTTPException(status_code=400, detail="end cannot be before start")
        return start, end
    if period == "yesterday":
        return midnight - timedelta(days=1), midnight
    if period == "week":
        return midnight - timedelta(days=7), now
    if period == "month":
        return _months_back(midnight, 1), now
    if period == "year":
        return _months_back(midnight, 12), now
    return midnight, now


@router.get("/sales")
def sales_report(
    period: str = "today",
    group_by: str = "day",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    ctx=Depends(require_pos_role(*MANAGER_ROLES)),
):
    group_by = (group_by or "day").strip().lower()
    if group_by not in GROUP_BY_FORMATS:
        raise HTTPException(status_code=400, detail="invalid group_by")
    range_start, range_end = resolve_report_range(period, datetime.now(timezone.utc), start, end)
    tenant_id = ctx["tenant_id"]
    window = (tenant_id, range_start, range_end)
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*) AS total_orders,
                       COALESCE(SUM(total_cents), 0) AS total_sales_cents,
                       COALESCE(SUM(tax_cents), 0) AS total_tax_cents,
                       COALESCE(SUM(discount_cents), 0) AS total_discounts_cents,
                       COALESCE(SUM(tip_cents), 0) AS total_tips_cents
                FROM pos_orders
                WHERE tenant_id = %s AND status = 'PAID' AND closed_at >= %s AND closed_at <= %s
                """,
                window,
            )
            summary = dict(cur.fetchone())
            n = int(summary["total_orders"] or 0)
            summary["average_order_cents"] = round(int(summary["total_sales_cents"]) / n) if n else 0
            summary["net_sales_cents"] = int(summary["total_sales_cents"]) - int(summary["total_discounts_cents"])

            cur.execute(
                """
                SELECT p.provider, SUM(p.amount_cents) AS amount_cents
                FROM pos_payments p
                JOIN pos_orders o ON o.id = p.order_id
                WHERE o.tenant_id = %s AND o.status = 'PAID' AND o.closed_at >= %s AND o.closed_at <= %s
                  AND p.status = 'CAPTURED'
                GROUP BY p.provider
                ORDER BY p.provider
                """,
                window,
            )
            payment_breakdown = {r["provider"]: int(r["amount_cents"] or 0) for r in cur.fetchall()}

            cur.execute(
                """
                SELECT COALESCE(i.product_id::text, i.product_name) AS id,
                       MAX(i.product_name) AS name,
                       SUM(i.quantity) AS quantity,
                       SUM(i.unit_price_cents * i.quantity) AS total_cents
                FROM pos_order_items i
                JOIN pos_orders o ON o.id = i.order_id
                WHERE o.tenant_id = %s AND o.status = 'PAID' AND o.closed_at >= %s AND o.closed_at <= %s
                  AND i.status <> 'VOID'
                GROUP BY 1
                ORDER BY total_cents DESC
                LIMIT %s
                """,
                window + (TOP_PRODUCTS_LIMIT,),
            )
            top_products = cur.fetchall()

            cur.execute(
                """
                SELECT to_char(date_trunc(%s, closed_at), %s) AS period,
                       COUNT(*) AS orders,
                       COALESCE(SUM(total_cents), 0) AS sales_cents
                FROM pos_orders
                WHERE tenant_id = %s AND status = 'PAID' AND closed_at >= %s AND closed_at <= %s
                GROUP BY 1
                ORDER BY 1
                """,
                (group_by, GROUP_BY_FORMATS[group_by]) + window,
            )
            timeline = cur.fetchall()

    return {
        "report": {
            "date_range": {"start": range_start, "end": range_end, "period": (period or "today").lower()},
            "summary": summary,
            "payment_breakdown": payment_breakdown,
            "top_products": top_products,
            "sales_timeline": timeline,
        }
    }


@router.get("/shift-summary")
def shift_summary(session_id: str, ctx=Depends(require_pos_auth)):
    """
    Totals for the orders opened during one cash session, for the close-out screen.

    Only PAID orders count towards sales; CANCELLED ones are counted separately.
    An open session is summarised up to now.
    """
    tenant_id = ctx["tenant_id"]
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id, s.status, s.opened_at, s.closed_at, s.opening_cash_cents,
                       u.first_name AS opened_by_first_name, u.last_name AS opened_by_last_name
                FROM cash_sessions s
                LEFT JOIN tenant_users u ON u.id = s.opened_by
                WHERE s.tenant_id = %s AND s.id = %s
                """,
                (tenant_id, session_id),
            )
            session = cur.fetchone()
            if not session:
                raise HTTPException(status_code=404, detail="cash session not found")
            session_end = session["closed_at"] or datetime.now(timezone.utc)
            window = (tenant_id, session["opened_at"], session_end)

            cur.execute(
                """
                SELECT COUNT(*) FILTER (WHERE status = 'PAID') AS order_count,
                       COUNT(*) FILTER (WHERE status = 'CANCELLED') AS cancelled_order_count,
                       COALESCE(SUM(total_cents) FILTER (WHERE status = 'PAID'), 0) AS total_sales_cents,
                       COALESCE(SUM(tax_cents) FILTER (WHERE status = 'PAID'), 0) AS total_tax_cents,
                       COALESCE(SUM(discount_cents) FILTER (WHERE status = 'PAID'), 0) AS total_discounts_cents,
                       COALESCE(SUM(tip_cents) FILTER (WHERE status = 'PAID'), 0) AS total_tips_cents
                FROM pos_orders
                WHERE tenant_id = %s AND opened_at >= %s AND opened_at <= %s
                  AND status IN ('PAID', 'CANCELLED')
                """,
                window,
            )
            totals = {k: int(v or 0) for k, v in cur.fetchone().items()}

            cur.execute(
                """
                SELECT p.provider, SUM(p.amount_cents) AS amount_cents
                FROM pos_payments p
                JOIN pos_orders o ON o.id = p.order_id
                WHERE o.tenant_id = %s AND o.opened_at >= %s AND o.opened_at <= %s
                  AND o.status = 'PAID' AND p.status = 'CAPTURED'
                GROUP BY p.provider
                """,
                window,
            )
            by_provider = {r["provider"]: int(r["amount_cents"] or 0) for r in cur.fetchall()}

            cur.execute(
                """
                SELECT COALESCE(SUM(i.quantity) FILTER (WHERE i.status <> 'VOID' AND o.status = 'PAID'), 0) AS item_count,
                       COUNT(*) FILTER (WHERE i.status = 'VOID') AS void_count
                FROM pos_order_items i
                JOIN pos_orders o ON o.id = i.order_id
                WHERE o.tenant_id = %s AND o.opened_at >= %s AND o.opened_at <= %s
                  AND o.status IN ('PAID', 'CANCELLED')
                """,
                window,
            )
            counts = cur.fetchone()

    cash = by_provider.get("CASH", 0)
    card = by_provider.get("CARD", 0)
    order_count = totals["order_count"]
    return {
        "summary": {
            "session_id": session["id"],
            "session_status": session["status"],
            "session_start": session["opened_at"],
            "session_end": session_end,
            "opened_by": {
                "first_name": session["opened_by_first_name"],
                "last_name": session["opened_by_last_name"],
            },
            "opening_cash_cents": int(session["opening_cash_cents"] or 0),
            **totals,
            "cash_payments_cents": cash,
            "card_payments_cents": card,
            "other_payments_cents": sum(by_provider.values()) - cash - card,
            "item_count": int(counts["item_count"] or 0),
            "void_count": int(counts["void_count"] or 0),
            "average_order_cents": round(totals["total_sales_cents"] / order_count) if order_count else 0,
            "expected_cash_cents": int(session["opening_cash_cents"] or 0) + cash,
            "total_display": format_money(totals["total_sales_cents"], ctx["tenant_currency"]),
        }
    }
