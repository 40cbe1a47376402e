import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.app.routers import employees as employees_router
from backend.app.routers.employees import (
    EmployeeIn,
    EmployeeUpdate,
    create_employee,
    deactivate_employee,
    list_employees,
    update_employee,
)
from backend.app.security import verify_password


def _ctx(user_id="u-admin", role="ADMIN"):
    return {"tenant_id": "tenant-1", "user": {"id": user_id, "role": role}}


def _user(user_id, email, role, is_active=True):
    return {
        "id": user_id,
        "first_name": user_id,
        "last_name": None,
        "email": email,
        "phone": None,
        "role": role,
        "is_active": is_active,
        "last_login_at": None,
        "created_at": None,
        "password_hash": None,
    }


class _EmployeeCursor:
    """tenant_users keyed by id, plus revoked sessions and audit actions."""

    def __init__(self, users=()):
        self.users = {u["id"]: dict(u) for u in users}
        self.revoked = []
        self.audit_actions = []
        self.rows = []
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def _public(self, row):
        return {k: v for k, v in row.items() if k != "password_hash"}

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        self.executed.append((text, params))
        if text.startswith("select 1 from tenant_users where tenant_id = %s and lower(email) = %s"):
            _tid, email, exclude_id, _ = params
            self.rows = [{"x": 1} for u in self.users.values() if u["email"].lower() == email and u["id"] != exclude_id]
        elif "from tenant_users where tenant_id = %s and id = %s for update" in text:
            row = self.users.get(params[1])
            self.rows = [self._public(row)] if row else []
        elif "from tenant_users where tenant_id = %s order by" in text or "from tenant_users where tenant_id = %s and" in text:
            self.rows = [self._public(u) for u in self.users.values()]
        elif text.startswith("insert into tenant_users"):
            _tid, email, first, last, phone, role, password_hash, is_active = params
            new_id = f"u-{len(self.users) + 1}"
            self.users[new_id] = {
                **_user(new_id, email, role, is_active),
                "first_name": first,
                "last_name": last,
                "phone": phone,
                "password_hash": password_hash,
            }
            self.rows = [self._public(self.users[new_id])]
        elif text.startswith("update tenant_users set is_active = false where"):
            self.users[params[1]]["is_active"] = False
            self.rows = []
        elif text.startswith("update tenant_users set"):
            assignments = text[len("update tenant_users set "):text.index(" where ")].split(", ")
            *values, _tid, user_id = params
            for assignment, value in zip(assignments, values):
                self.users[user_id][assignment.split(" = ")[0]] = value
            self.rows = [self._public(self.users[user_id])]
        elif text.startswith("delete from pos_sessions where tenant_user_id = %s"):
            self.revoked.append(params[0])
            self.rows = []
        elif text.startswith("insert into audit_logs"):
            self.audit_actions.append(params[2])
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
    monkeypatch.setattr(employees_router, "get_conn", lambda: _Conn(cur))
    monkeypatch.setattr(employees_router, "set_tenant_context", lambda conn, tid: None)
    return cur


TEAM = [
    _user("u-owner", "owner@cafe.test", "OWNER"),
    _user("u-admin", "admin@cafe.test", "ADMIN"),
    _user("u-staff", "staff@cafe.test", "STAFF"),
]


def test_create_employee_hashes_password(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    data = EmployeeIn(first_name=" Sam ", last_name="Lee", email="Sam@Cafe.test", password="secret1", role="kitchen")

    out = create_employee(data, ctx=_ctx())

    employee = out["employee"]
    assert employee["email"] == "sam@cafe.test"
    assert employee["role"] == "KITCHEN"
    assert employee["first_name"] == "Sam"
    assert "password_hash" not in employee
    stored = cur.users[employee["id"]]["password_hash"]
    assert stored != "secret1"
    assert verify_password("secret1", stored)
    assert cur.audit_actions == ["employee_create"]


def test_create_employee_without_password_cannot_log_in(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    out = create_employee(EmployeeIn(first_name="Ali", last_name="B", email="ali@cafe.test", role="STAFF"), ctx=_ctx())
    assert cur.users[out["employee"]["id"]]["password_hash"] is None


def test_duplicate_email_is_409(monkeypatch):
    _patch(monkeypatch, _EmployeeCursor(TEAM))
    data = EmployeeIn(first_name="Dup", last_name="X", email="STAFF@cafe.test", role="STAFF")
    with pytest.raises(HTTPException) as exc:
        create_employee(data, ctx=_ctx())
    assert exc.value.status_code == 409


def test_owner_role_cannot_be_granted():
    with pytest.raises(ValidationError):
        EmployeeIn(first_name="A", last_name="B", email="a@cafe.test", role="OWNER")
    with pytest.raises(ValidationError):
        EmployeeUpdate(role="owner")


def test_role_change_revokes_sessions(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))

    out = update_employee("u-staff", EmployeeUpdate(role="manager", phone=" "), ctx=_ctx())

    assert out["employee"]["role"] == "MANAGER"
    assert out["employee"]["phone"] is None
    assert cur.revoked == ["u-staff"]
    assert cur.audit_actions == ["employee_update"]


def test_name_change_keeps_sessions(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    update_employee("u-staff", EmployeeUpdate(first_name="Sara"), ctx=_ctx())
    assert cur.users["u-staff"]["first_name"] == "Sara"
    assert cur.revoked == []


def test_password_change_is_hashed_and_not_audited(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    update_employee("u-staff", EmployeeUpdate(password="newpass9"), ctx=_ctx())
    assert verify_password("newpass9", cur.users["u-staff"]["password_hash"])
    assert cur.revoked == ["u-staff"]
    audit_params = [p for t, p in cur.executed if t.startswith("insert into audit_logs")][0]
    assert "newpass9" not in audit_params[-1]


def test_email_taken_by_someone_else_is_409(monkeypatch):
    _patch(monkeypatch, _EmployeeCursor(TEAM))
    with pytest.raises(HTTPException) as exc:
        update_employee("u-staff", EmployeeUpdate(email="admin@cafe.test"), ctx=_ctx())
    assert exc.value.status_code == 409


@pytest.mark.parametrize(
    "employee_id,patch,ctx,status,detail",
    [
        ("u-owner", {"first_name": "X"}, _ctx(), 403, "only the owner can edit the owner account"),
        ("u-owner", {"role": "ADMIN"}, _ctx("u-owner", "OWNER"), 400, "cannot change the owner's role"),
        ("u-owner", {"is_active": False}, _ctx("u-owner", "OWNER"), 400, "cannot deactivate the owner"),
        ("u-admin", {"is_active": False}, _ctx(), 400, "you cannot deactivate yourself"),
        ("u-admin", {"role": "STAFF"}, _ctx(), 400, "you cannot change your own role"),
        ("u-missing", {"first_name": "X"}, _ctx(), 404, "employee not found"),
    ],
)
def test_update_guards(monkeypatch, employee_id, patch, ctx, status, detail):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    with pytest.raises(HTTPException) as exc:
        update_employee(employee_id, EmployeeUpdate(**patch), ctx=ctx)
    assert (exc.value.status_code, exc.value.detail) == (status, detail)
    assert cur.audit_actions == []


def test_deactivate_revokes_sessions(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))
    assert deactivate_employee("u-staff", ctx=_ctx()) == {"ok": True}
    assert cur.users["u-staff"]["is_active"] is False
    assert cur.revoked == ["u-staff"]
    assert cur.audit_actions == ["employee_deactivate"]


def test_owner_and_self_cannot_be_deactivated(monkeypatch):
    _patch(monkeypatch, _EmployeeCursor(TEAM))
    with pytest.raises(HTTPException) as exc:
        deactivate_employee("u-owner", ctx=_ctx())
    assert exc.value.detail == "cannot deactivate the owner"
    with pytest.raises(HTTPException) as exc:
        deactivate_employee("u-admin", ctx=_ctx())
    assert exc.value.detail == "you cannot deactivate yourself"


def test_list_filters_by_known_role_only(monkeypatch):
    cur = _patch(monkeypatch, _EmployeeCursor(TEAM))

    list_employees(active_only=True, role="kitchen", ctx=_ctx())
    list_employees(role="chef", ctx=_ctx())

    (first_sql, first_params), (second_sql, second_params) = cur.executed
    assert "is_active = true" in first_sql and "role = %s" in first_sql
    assert first_params == ["tenant-1", "KITCHEN"]
    assert "role = %s" not in second_sql
    assert second_params == ["tenant-1"]
