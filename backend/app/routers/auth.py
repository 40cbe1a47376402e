from fastapi import APIRouter, HTTPException, Depends, Request, Cookie, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..config import settings
from ..cookies import POS_COOKIE_NAME, clear_pos_cookie, set_pos_cookie
from ..db import get_admin_conn
from ..deps import extract_session_token, require_pos_auth
from ..logs import json_log
from ..pos_tokens import sign_pos_token, verify_pos_token
from ..rate_limit import enforce_rate_limit, login_limiter
from ..security import hash_password, hash_session_token, needs_rehash, verify_password
from ..tenant_slug import build_tenant_host, is_valid_tenant_slug, normalize_tenant_slug
from ..validation import Email

router = APIRouter(prefix="/pos", tags=["pos-auth"])
LOGIN_RATE = "10/minute"


class PosLoginIn(BaseModel):
    tenant_slug: str
    email: Email
    password: str = Field(min_length=8)


def _invalid_login(reason: str, slug: str, ip: str):
    json_log("warning", "pos.login.failed", reason=reason, tenant_slug=slug, client_ip=ip)
    raise HTTPException(status_code=401, detail="invalid email or password")


@router.post("/auth/login")
def login(data: PosLoginIn, request: Request):
    ip = enforce_rate_limit(
        login_limiter, request, LOGIN_RATE, detail="too many login attempts, please try again later"
    )
    slug = normalize_tenant_slug(data.tenant_slug)
    if not is_valid_tenant_slug(slug):
        raise HTTPException(status_code=400, detail="invalid tenant")

    # Cross-tenant lookup: the admin pool has no tenant context.
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id, slug, name, currency FROM tenants WHERE slug = %s",
                (slug,),
            )
            tenant = cur.fetchone()
            if not tenant:
                _invalid_login("unknown_tenant", slug, ip)

            cur.execute(
                """
                SELECT id, email, first_name, last_name, role, password_hash, is_active
                FROM tenant_users
                WHERE tenant_id = %s AND lower(email) = %s
                """,
                (tenant["id"], data.email),
            )
            user = cur.fetchone()
            if not user or not user["is_active"] or not user["password_hash"]:
                _invalid_login("unknown_or_inactive_user", slug, ip)
            if not verify_password(data.password, user["password_hash"]):
                _invalid_login("bad_password", slug, ip)

            if needs_rehash(user["password_hash"]):
                cur.execute(
                    "UPDATE tenant_users SET password_hash = %s WHERE id = %s",
                    (hash_password(data.password), user["id"]),
                )

            token = sign_pos_token(tenant["slug"], str(user["id"]), user["role"])
            expires = datetime.now(timezone.utc) + timedelta(hours=settings.session_hours)
            cur.execute(
                """
                INSERT INTO pos_sessions (id, tenant_user_id, token_hash, expires_at, ip_address, user_agent)
                VALUES (gen_random_uuid(), %s, %s, %s, %s, %s)
                """,
                (user["id"], hash_session_token(token), expires, ip, request.headers.get("user-agent")),
            )
            cur.execute(
                "UPDATE tenant_users SET last_login_at = now() WHERE id = %s",
                (user["id"],),
            )

    json_log("info", "pos.login.ok", tenant_slug=slug, user_id=str(user["id"]), client_ip=ip)
    resp = JSONResponse(
        {
            "user": {
                "id": str(user["id"]),
                "email": user["email"],
                "first_name": user["first_name"],
                "last_name": user["last_name"],
                "role": user["role"],
            },
            "tenant": {
                "id": str(tenant["id"]),
                "slug": tenant["slug"],
                "name": tenant["name"],
                "currency": tenant["currency"],
                "host": build_tenant_host(tenant["slug"]),
            },
            "expires_at": expires.isoformat(),
        }
    )
    set_pos_cookie(resp, token, request.headers.get("host"))
    return resp


@router.post("/auth/logout")
def logout(
    request: Request,
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=POS_COOKIE_NAME),
):
    token = extract_session_token(authorization, cookie_token)
    if token:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM pos_sessions WHERE token_hash = %s", (hash_session_token(token),))
        # Opaque tokens carry no claims; the log line then has no user.
        claims = verify_pos_token(token) or {}
        json_log("info", "pos.logout", tenant_slug=claims.get("tenantSlug"), user_id=claims.get("tenantUserId"))
    resp = JSONResponse({"ok": True})
    clear_pos_cookie(resp, request.headers.get("host"))
    return resp


@router.get("/tenants/{tenant}/me")
def me(ctx=Depends(require_pos_auth)):
    return {
        "user": ctx["user"],
        "tenant": {"id": ctx["tenant_id"], "slug": ctx["tenant_slug"], "currency": ctx["tenant_currency"]},
    }
