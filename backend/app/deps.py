from fastapi import Header, HTTPException, Depends, Cookie
from datetime import datetime, timezone
from typing import Optional

from .config import settings
from .cookies import POS_COOKIE_NAME
from .db import get_admin_conn
from .security import hash_session_token
from .tenant_slug import is_valid_tenant_slug, normalize_tenant_slug


def extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    if cookie_token:
        return cookie_token
    return None


def require_pos_auth(
    tenant: str,
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=POS_COOKIE_NAME),
):
    """
    Resolve the POS session for the tenant in the URL.

    Checks run in a fixed order so the status code tells the client what to do:
    400 bad slug, 401 no/expired session, 404 unknown tenant, 403 disabled or
    foreign user.
    """
    slug = normalize_tenant_slug(tenant)
    if not is_valid_tenant_slug(slug):
        raise HTTPException(status_code=400, detail="invalid tenant")

    token = extract_session_token(authorization, cookie_token)
    if not token:
        raise HTTPException(status_code=401, detail="authentication required")

    # Sessions and tenants are looked up before any tenant context exists.
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, slug, currency, tax_rate
                FROM tenants
                WHERE slug = %s
                """,
                (slug,),
            )
            t = cur.fetchone()
            if not t:
                raise HTTPException(status_code=404, detail="tenant not found")

            cur.execute(
                """
                SELECT s.id AS session_id, s.expires_at,
                       u.id AS user_id, u.tenant_id, u.role, u.email,
                       u.first_name, u.last_name, u.is_active
                FROM pos_sessions s
                JOIN tenant_users u ON u.id = s.tenant_user_id
                WHERE s.token_hash = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()

    now = datetime.now(timezone.utc)
    if not row or row["expires_at"] <= now:
        raise HTTPException(status_code=401, detail="invalid or expired session")
    if not row["is_active"]:
        raise HTTPException(status_code=403, detail="account is disabled")
    if str(row["tenant_id"]) != str(t["id"]):
        raise HTTPException(status_code=403, detail="tenant mismatch")

    return {
        "tenant_id": str(t["id"]),
        "tenant_slug": t["slug"],
        "tenant_currency": t["currency"],
        "tax_rate": t["tax_rate"] if t["tax_rate"] is not None else settings.default_tax_rate,
        "session_id": str(row["session_id"]),
        "user": {
            "id": str(row["user_id"]),
            "role": row["role"],
            "email": row["email"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
        },
    }


def require_pos_role(*roles: str):
    allowed = {r.upper() for r in roles}

    def _dep(ctx=Depends(require_pos_auth)):
        if str(ctx["user"]["role"]).upper() not in allowed:
            raise HTTPException(status_code=403, detail="permission denied")
        return ctx
    return _dep


def assert_role(ctx: dict, roles, detail: str = "permission denied") -> None:
    # For handlers where only some payloads need elevated roles.
    if str(ctx["user"]["role"]).upper() not in roles:
        raise HTTPException(status_code=403, detail=detail)
