from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

from backend.app.routers import cash_sessions as cash_router
from backend.app.routers.cash_sessions import (
    CashSessionCloseIn,
    CashSessionOpenIn,
    _assert_non_negative_cash,
    _expected_cash,
    close_cash_session,
    open_cash_session,
)

OPENED_AT = datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)
CTX = {"tenant_id": "tenant-1", "user": {"id": "user-1", "role": "STAFF"}}


class _CashCursor:
    def __init__(self, cash_in=0, open_session=None):
        self.cash_in = cash_in
        self.open_session = open_session
        self.rows = []
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.executed.append((text, params))
        if "as cash_in from pos_payments" in text:
            self.rows = [{"cash_in": self.cash_in}]
        elif "from cash_sessions where tenant_id = %s and status = 'open'" in text:
            self.rows = [self.open_session] if self.open_session else []
        elif "from cash_sessions where tenant_id = %s and id = %s and status = 'open'" in text:
            self.rows = [self.open_session] if self.open_session else []
        elif text.startswith("insert into cash_sessions"):
            self.rows = [{"id": "cs-1", "status": "OPEN", "opened_at": OPENED_AT, "opening_cash_cents": params[2]}]
        elif text.startswith("update cash_sessions"):
            closed_by, closing, expected, difference, _notes, sid = params
            self.rows = [
                {
                    "id": sid,
                    "status": "CLOSED",
                    "closing_cash_cents": closing,
                    "expected_cash_cents": expected,
                    "difference_cents": difference,
                }
            ]
        elif text.startswith("insert into audit_logs"):
            self.rows = []
        else:
            raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


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
    monkeypatch.setattr(cash_router, "get_conn", lambda: _Conn(cur))
    monkeypatch.setattr(cash_router, "set_tenant_context", lambda *_args, **_kwargs: None)
    return cur


def test_expected_cash_adds_captured_cash_payments():
    cur = _CashCursor(cash_in=4550)
    assert _expected_cash(cur, "tenant-1", OPENED_AT, 10000) == 14550
    _text, params = cur.executed[0]
    assert params == ("tenant-1", OPENED_AT, None, None)


def test_expected_cash_with_no_sales_is_opening_float():
    cur = _CashCursor(cash_in=None)
    assert _expected_cash(cur, "tenant-1", OPENED_AT, 2500) == 2500


def test_negative_cash_rejected():
    with pytest.raises(HTTPException) as exc:
        _assert_non_negative_cash(-1, "opening")
    assert exc.value.detail == "opening cash must be >= 0"
    _assert_non_negative_cash(0, "closing")


def test_open_session_rejects_second_open(monkeypatch):
    _patch(monkeypatch, _CashCursor(open_session={"id": "cs-0"}))
    with pytest.raises(HTTPException) as exc:
        open_cash_session(data=CashSessionOpenIn(opening_cash_cents=1000), ctx=CTX)
    assert exc.value.detail == "a cash session is already open"


def test_open_session(monkeypatch):
    _patch(monkeypatch, _CashCursor())
    out = open_cash_session(data=CashSessionOpenIn(opening_cash_cents=1000), ctx=CTX)
    assert out["session"]["opening_cash_cents"] == 1000


def test_close_session_records_difference_and_audits(monkeypatch):
    session = {"id": "cs-1", "opened_at": OPENED_AT, "opening_cash_cents": 10000, "notes": None}
    cur = _patch(monkeypatch, _CashCursor(cash_in=5000, open_session=session))
    out = close_cash_session(session_id="cs-1", data=CashSessionCloseIn(closing_cash_cents=14800), ctx=CTX)
    assert out["session"]["expected_cash_cents"] == 15000
    assert out["session"]["difference_cents"] == -200
    assert any(text.startswith("insert into audit_logs") for text, _ in cur.executed)


def test_close_unknown_session_is_404(monkeypatch):
    _patch(monkeypatch, _CashCursor())
    with pytest.raises(HTTPException) as exc:
        close_cash_session(session_id="cs-x", data=CashSessionCloseIn(closing_cash_cents=0), ctx=CTX)
    assert exc.value.status_code == 404
