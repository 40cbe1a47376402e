import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.app.deps import require_pos_auth
from backend.app.routers import customers as customers_router
from backend.app.routers import employees as employees_router
from backend.app.routers import invoices as invoices_router

INVOICE_BODY = {"customer_name": "Sunset Retail", "lines": [{"description": "Tray", "quantity": 1, "unit_price_cents": 100}]}
EMPLOYEE_BODY = {"first_name": "Sam", "last_name": "Lee", "email": "sam@cafe.test", "role": "STAFF"}


def _client(role):
    app = FastAPI()
    app.include_router(invoices_router.router)
    app.include_router(customers_router.router)
    app.include_router(employees_router.router)
    ctx = {
        "tenant_id": "tenant-1",
        "tenant_slug": "cafe",
        "tenant_currency": "AED",
        "tax_rate": None,
        "session_id": "sess-1",
        "user": {"id": "user-1", "role": role},
    }
    app.dependency_overrides[require_pos_auth] = lambda: ctx
    return TestClient(app)


class _DeleteCursor:
    def __init__(self):
        self.rows = []
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.executed.append(text)
        if text.startswith("update pos_orders set customer_id = null"):
            self.rows = []
        elif text.startswith("delete from customers"):
            self.rows = [{"id": params[1]}]
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


@pytest.mark.parametrize("role", ["STAFF", "KITCHEN"])
@pytest.mark.parametrize(
    "method,path,body",
    [
        ("POST", "/pos/tenants/cafe/invoices", INVOICE_BODY),
        ("PATCH", "/pos/tenants/cafe/invoices/inv-1", {"notes": "paid by transfer"}),
        ("DELETE", "/pos/tenants/cafe/invoices/inv-1", None),
        ("DELETE", "/pos/tenants/cafe/customers/c-1", None),
    ],
)
def test_floor_roles_cannot_manage_invoices_or_delete_customers(role, method, path, body):
    resp = _client(role).request(method, path, json=body)
    assert resp.status_code == 403
    assert resp.json() == {"detail": "permission denied"}


def test_manager_can_delete_customer(monkeypatch):
    cur = _DeleteCursor()
    monkeypatch.setattr(customers_router, "get_conn", lambda: _Conn(cur))
    monkeypatch.setattr(customers_router, "set_tenant_context", lambda conn, tid: None)

    resp = _client("MANAGER").delete("/pos/tenants/cafe/customers/c-1")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert cur.executed[0].startswith("update pos_orders set customer_id = null")


@pytest.mark.parametrize("role", ["MANAGER", "STAFF", "KITCHEN"])
@pytest.mark.parametrize(
    "method,path,body",
    [
        ("POST", "/pos/tenants/cafe/employees", EMPLOYEE_BODY),
        ("PATCH", "/pos/tenants/cafe/employees/u-2", {"role": "MANAGER"}),
        ("DELETE", "/pos/tenants/cafe/employees/u-2", None),
    ],
)
def test_only_admins_manage_employees(role, method, path, body):
    resp = _client(role).request(method, path, json=body)
    assert resp.status_code == 403
    assert resp.json() == {"detail": "permission denied"}
