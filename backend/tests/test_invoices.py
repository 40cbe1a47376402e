from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.routers import invoices as invoices_router
from backend.app.routers.invoices import (
    InvoiceIn,
    InvoiceLineIn,
    create_invoice,
    delete_invoice,
    format_invoice_number,
    get_invoice,
    invoice_totals,
)

CTX = {"tenant_id": "tenant-1", "tenant_currency": "AED", "user": {"id": "user-1", "role": "STAFF"}}


class _InvoiceCursor:
    """Keeps invoices as {id: {"number", "status"}} so numbering sees deletes."""

    def __init__(self, invoices=None, customer_exists=True):
        self.invoices = dict(invoices or {})
        self.customer_exists = customer_exists
        self.rows = []
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.executed.append((text, params))
        if text.startswith("select 1 from customers"):
            self.rows = [{"x": 1}] if self.customer_exists else []
        elif "pg_advisory_xact_lock" in text:
            self.rows = []
        elif "as last_seq from invoices" in text:
            seqs = [int(inv["number"].split("-")[1]) for inv in self.invoices.values()]
            self.rows = [{"last_seq": max(seqs) if seqs else None}]
        elif text.startswith("insert into invoices"):
            number = params[1]
            assert number not in {inv["number"] for inv in self.invoices.values()}, f"duplicate {number}"
            inv_id = f"inv-{len(self.executed)}"
            self.invoices[inv_id] = {"number": number, "status": "DRAFT"}
            self.rows = [{"id": inv_id}]
        elif text.startswith("insert into invoice_lines"):
            self.rows = []
        elif text.startswith("select status from invoices"):
            inv = self.invoices.get(params[1])
            self.rows = [{"status": inv["status"]}] if inv else []
        elif text.startswith("delete from invoice_lines"):
            self.rows = []
        elif text.startswith("delete from invoices"):
            self.invoices.pop(params[0], None)
            self.rows = []
        else:
            raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None


class _Tx:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _Conn:
    def __init__(self, cur):
        self._cur = cur

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return _Tx()

    def cursor(self):
        return self._cur


def _patch(monkeypatch, cur):
    monkeypatch.setattr(invoices_router, "get_conn", lambda: _Conn(cur))
    monkeypatch.setattr(invoices_router, "set_tenant_context", lambda conn, tid: None)


def _lines():
    return [
        InvoiceLineIn(description="Catering tray", quantity=3, unit_price_cents=4999),
        InvoiceLineIn(description="Delivery", quantity=1, unit_price_cents=1500),
    ]


def test_invoice_totals_round_tax_half_up():
    assert invoice_totals(_lines(), Decimal("0.05")) == {
        "subtotal_cents": 16497,
        "tax_cents": 825,
        "total_cents": 17322,
    }
    assert invoice_totals(_lines(), Decimal("0"))["total_cents"] == 16497


def test_format_invoice_number_pads():
    assert format_invoice_number(1) == "INV-000001"
    assert format_invoice_number(1234567) == "INV-1234567"


def test_create_invoice_numbers_after_existing(monkeypatch):
    existing = {f"old-{n}": {"number": format_invoice_number(n), "status": "PAID"} for n in range(1, 8)}
    cur = _InvoiceCursor(invoices=existing)
    _patch(monkeypatch, cur)
    out = create_invoice(InvoiceIn(customer_name=" Sunset Retail ", lines=_lines()), ctx=CTX)

    assert out["number"] == "INV-000008"
    assert out["total_cents"] == 17322
    insert = [p for t, p in cur.executed if t.startswith("insert into invoices")][0]
    assert insert[3] == "Sunset Retail"
    assert insert[10] == "AED"
    assert insert[6] - insert[5] == timedelta(days=7)
    assert len([t for t, _ in cur.executed if t.startswith("insert into invoice_lines")]) == 2


def test_create_invoice_rejects_unknown_customer(monkeypatch):
    cur = _InvoiceCursor(customer_exists=False)
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        create_invoice(InvoiceIn(customer_id="c-x", customer_name="X", lines=_lines()), ctx=CTX)
    assert exc.value.detail == "invalid customer_id"


def test_delete_only_drafts(monkeypatch):
    cur = _InvoiceCursor(invoices={"inv-1": {"number": "INV-000001", "status": "SENT"}})
    _patch(monkeypatch, cur)
    with pytest.raises(HTTPException) as exc:
        delete_invoice("inv-1", ctx=CTX)
    assert exc.value.status_code == 400

    cur = _InvoiceCursor(invoices={"inv-1": {"number": "INV-000001", "status": "DRAFT"}})
    _patch(monkeypatch, cur)
    assert delete_invoice("inv-1", ctx=CTX) == {"ok": True}
    assert [t for t, _ in cur.executed if t.startswith("delete from")] == [
        "delete from invoice_lines where invoice_id = %s",
        "delete from invoices where id = %s",
    ]


def test_delete_missing_invoice_is_404(monkeypatch):
    _patch(monkeypatch, _InvoiceCursor())
    with pytest.raises(HTTPException) as exc:
        delete_invoice("nope", ctx=CTX)
    assert exc.value.status_code == 404


def test_numbering_continues_after_a_draft_is_deleted(monkeypatch):
    cur = _InvoiceCursor()
    _patch(monkeypatch, cur)
    first = create_invoice(InvoiceIn(customer_name="A", lines=_lines()), ctx=CTX)
    second = create_invoice(InvoiceIn(customer_name="B", lines=_lines()), ctx=CTX)
    delete_invoice(first["id"], ctx=CTX)

    third = create_invoice(InvoiceIn(customer_name="C", lines=_lines()), ctx=CTX)

    assert [first["number"], second["number"], third["number"]] == ["INV-000001", "INV-000002", "INV-000003"]
    assert sorted(inv["number"] for inv in cur.invoices.values()) == ["INV-000002", "INV-000003"]


class _ReadCursor:
    def __init__(self, invoice, lines):
        self.invoice = invoice
        self.lines = lines
        self.rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        if "from invoices where tenant_id = %s and id = %s" in text:
            self.rows = [dict(self.invoice)] if self.invoice else []
        elif "from invoice_lines where invoice_id = %s" in text:
            self.rows = list(self.lines)
        else:
            raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


def test_get_invoice_includes_formatted_total(monkeypatch):
    invoice = {"id": "inv-1", "number": "INV-000004", "status": "SENT", "total_cents": 123456, "currency": "aed"}
    lines = [{"id": "l-1", "description": "Catering", "quantity": 1, "unit_price_cents": 117577, "line_total_cents": 117577}]
    _patch(monkeypatch, _ReadCursor(invoice, lines))

    out = get_invoice("inv-1", ctx=CTX)["invoice"]

    assert out["total_display"] == "AED 1,234.56"
    assert out["lines"] == lines


def test_get_missing_invoice_is_404(monkeypatch):
    _patch(monkeypatch, _ReadCursor(None, []))
    with pytest.raises(HTTPException) as exc:
        get_invoice("nope", ctx=CTX)
    assert exc.value.status_code == 404
