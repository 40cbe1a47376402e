from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
import json

from ..db import get_conn, set_tenant_context
from ..deps import require_pos_auth, require_pos_role
from ..logs import json_log
from ..security import hash_password
from ..validation import ADMIN_ROLES, Email, EmployeeRole

router = APIRouter(prefix="/pos/tenants/{tenant}/employees", tags=["pos-employees"])

EMPLOYEE_COLUMNS = "id, first_name, last_name, email, phone, role, is_active, last_login_at, created_at"
ROLE_FILTERS = ("OWNER", "ADMIN", "MANAGER", "STAFF", "KITCHEN")


class EmployeeIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: Email
    phone: Optional[str] = Field(default=None, max_length=30)
    password: Optional[str] = Field(default=None, min_length=6, max_length=200)
    role: EmployeeRole
    is_active: bool = True


class EmployeeUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[Email] = None
    phone: Optional[str] = Field(default=None, max_length=30)
    password: Optional[str] = Field(default=None, min_length=6, max_length=200)
    role: Optional[EmployeeRole] = None
    is_active: Optional[bool] = None


def _assert_email_free(cur, tenant_id: str, email: str, exclude_id: Optional[str] = None):
    cur.execute(
        """
        SELECT 1 FROM tenant_users
        WHERE tenant_id = %s AND lower(email) = %s AND (%s::uuid IS NULL OR id <> %s::uuid)
        """,
        (tenant_id, email, exclude_id, exclude_id),
    )
    if cur.fetchone():
        raise HTTPException(status_code=409, detail="an employee with this email already exists")


def _lock_employee(cur, tenant_id: str, employee_id: str) -> dict:
    cur.execute(
        f"SELECT {EMPLOYEE_COLUMNS} FROM tenant_users WHERE tenant_id = %s AND id = %s FOR UPDATE",
        (tenant_id, employee_id),
    )
    row = cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="employee not found")
    return row


def _revoke_sessions(cur, employee_id: str):
    cur.execute("DELETE FROM pos_sessions WHERE tenant_user_id = %s", (employee_id,))


def _audit(cur, ctx, action: str, employee_id: str, details: dict):
    cur.execute(
        """
        INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, 'tenant_user', %s, %s::jsonb)
        """,
        (ctx["tenant_id"], ctx["user"]["id"], action, employee_id, json.dumps(details, default=str)),
    )


@router.get("")
def list_employees(active_only: bool = False, role: Optional[str] = None, ctx=Depends(require_pos_auth)):
    where = ["tenant_id = %s"]
    params = [ctx["tenant_id"]]
    if active_only:
        where.append("is_active = true")
    role = (role or "").strip().upper()
    if role in ROLE_FILTERS:
        where.append("role = %s")
        params.append(role)
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"""
                SELECT {EMPLOYEE_COLUMNS}
                FROM tenant_users
                WHERE {' AND '.join(where)}
                ORDER BY role, first_name, email
                """,
                params,
            )
            return {"employees": cur.fetchall()}


@router.get("/{employee_id}")
def get_employee(employee_id: str, ctx=Depends(require_pos_auth)):
    with get_conn() as conn:
        set_tenant_context(conn, ctx["tenant_id"])
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {EMPLOYEE_COLUMNS} FROM tenant_users WHERE tenant_id = %s AND id = %s",
                (ctx["tenant_id"], employee_id),
            )
            row = cur.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="employee not found")
            return {"employee": row}


@router.post("", status_code=201)
def create_employee(data: EmployeeIn, ctx=Depends(require_pos_role(*ADMIN_ROLES))):
    tenant_id = ctx["tenant_id"]
    # Without a password the account exists for reporting but cannot log in.
    password_hash = hash_password(data.password) if data.password else None
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                _assert_email_free(cur, tenant_id, data.email)
                cur.execute(
                    f"""
                    INSERT INTO tenant_users
                      (id, tenant_id, email, first_name, last_name, phone, role, password_hash, is_active)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {EMPLOYEE_COLUMNS}
                    """,
                    (
                        tenant_id,
                        data.email,
                        data.first_name.strip(),
                        data.last_name.strip(),
                        (data.phone or "").strip() or None,
                        data.role,
                        password_hash,
                        data.is_active,
                    ),
                )
                employee = cur.fetchone()
                _audit(cur, ctx, "employee_create", employee["id"], {"email": data.email, "role": data.role})
                json_log("info", "pos.employee.created", tenant_id=str(tenant_id), employee_id=str(employee["id"]), role=data.role)
                return {"employee": employee}


@router.patch("/{employee_id}")
def update_employee(employee_id: str, data: EmployeeUpdate, ctx=Depends(require_pos_role(*ADMIN_ROLES))):
    tenant_id = ctx["tenant_id"]
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True}
    is_self = str(employee_id) == str(ctx["user"]["id"])
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                existing = _lock_employee(cur, tenant_id, employee_id)
                if existing["role"] == "OWNER":
                    if ctx["user"]["role"] != "OWNER":
                        raise HTTPException(status_code=403, detail="only the owner can edit the owner account")
                    if patch.get("role") is not None:
                        raise HTTPException(status_code=400, detail="cannot change the owner's role")
                    if patch.get("is_active") is False:
                        raise HTTPException(status_code=400, detail="cannot deactivate the owner")
                if is_self and patch.get("is_active") is False:
                    raise HTTPException(status_code=400, detail="you cannot deactivate yourself")
                if is_self and patch.get("role") is not None and patch["role"] != existing["role"]:
                    raise HTTPException(status_code=400, detail="you cannot change your own role")
                if patch.get("email"):
                    _assert_email_free(cur, tenant_id, patch["email"], exclude_id=employee_id)

                fields = []
                params = []
                for key in ("first_name", "last_name", "email", "role", "is_active"):
                    if patch.get(key) is not None:
                        value = patch[key]
                        fields.append(f"{key} = %s")
                        params.append(value.strip() if isinstance(value, str) else value)
                if "phone" in patch:
                    fields.append("phone = %s")
                    params.append((patch["phone"] or "").strip() or None)
                if patch.get("password"):
                    fields.append("password_hash = %s")
                    params.append(hash_password(patch["password"]))
                if not fields:
                    return {"ok": True}
                cur.execute(
                    f"""
                    UPDATE tenant_users
                    SET {', '.join(fields)}
                    WHERE tenant_id = %s AND id = %s
                    RETURNING {EMPLOYEE_COLUMNS}
                    """,
                    [*params, tenant_id, employee_id],
                )
                employee = cur.fetchone()

                # Role, password or access changes take effect on the next login.
                if patch.get("is_active") is False or patch.get("password") or (
                    patch.get("role") is not None and patch["role"] != existing["role"]
                ):
                    _revoke_sessions(cur, employee_id)
                audit = {k: v for k, v in patch.items() if k != "password"}
                if patch.get("password"):
                    audit["password_changed"] = True
                _audit(cur, ctx, "employee_update", employee_id, audit)
                return {"employee": employee}


@router.delete("/{employee_id}")
def deactivate_employee(employee_id: str, ctx=Depends(require_pos_role(*ADMIN_ROLES))):
    tenant_id = ctx["tenant_id"]
    if str(employee_id) == str(ctx["user"]["id"]):
        raise HTTPException(status_code=400, detail="you cannot deactivate yourself")
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                existing = _lock_employee(cur, tenant_id, employee_id)
                if existing["role"] == "OWNER":
                    raise HTTPException(status_code=400, detail="cannot deactivate the owner")
                cur.execute(
                    "UPDATE tenant_users SET is_active = false WHERE tenant_id = %s AND id = %s",
                    (tenant_id, employee_id),
                )
                _revoke_sessions(cur, employee_id)
                _audit(cur, ctx, "employee_deactivate", employee_id, {"email": existing["email"]})
                return {"ok": True}
