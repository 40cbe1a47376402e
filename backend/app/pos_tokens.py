import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .config import settings

DEV_JWT_SECRET = "nexuspoint-dev-secret-change-me"
TOKEN_TTL = timedelta(hours=24)
REQUIRED_CLAIMS = ("tenantSlug", "tenantUserId", "role")


def get_jwt_secret() -> Optional[str]:
    if settings.jwt_secret:
        return settings.jwt_secret
    if not settings.is_production:
        return DEV_JWT_SECRET
    return None


def sign_pos_token(tenant_slug: str, tenant_user_id: str, role: str, now: Optional[datetime] = None) -> str:
    """
    Mint the value stored in the POS session cookie.

    Without a signing secret (production with JWT_SECRET unset) an opaque random
    token is returned instead; the session row stays the source of truth either way.
    """
    secret = get_jwt_secret()
    if not secret:
        return "pos_" + secrets.token_hex(32)
    issued = now or datetime.now(timezone.utc)
    payload = {
        "tenantSlug": tenant_slug,
        "tenantUserId": str(tenant_user_id),
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + TOKEN_TTL).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_pos_token(token: str) -> Optional[dict]:
    secret = get_jwt_secret()
    if not secret or not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    if not all(payload.get(k) for k in REQUIRED_CLAIMS):
        return None
    return payload
