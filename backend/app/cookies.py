from typing import Optional

from fastapi import Response

from .config import settings

POS_COOKIE_NAME = "pos-auth-token"


def cookie_domain_for_tenant_root(host: Optional[str]) -> Optional[str]:
    # Share the session across tenant subdomains only in production and only
    # when the request actually arrived on the configured root domain.
    if not settings.is_production:
        return None
    root = (settings.tenant_root_domain or "").lower()
    if not root or "localhost" in root:
        return None
    hostname = (host or "").split(":", 1)[0].strip().lower()
    if not hostname:
        return None
    if hostname == root or hostname.endswith("." + root):
        return "." + root
    return None


def set_pos_cookie(resp: Response, token: str, host: Optional[str]) -> None:
    resp.set_cookie(
        key=POS_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.env not in {"local", "dev"},
        max_age=settings.session_hours * 60 * 60,
        path="/",
        domain=cookie_domain_for_tenant_root(host),
    )


def clear_pos_cookie(resp: Response, host: Optional[str]) -> None:
    resp.delete_cookie(
        key=POS_COOKIE_NAME,
        path="/",
        domain=cookie_domain_for_tenant_root(host),
        secure=settings.env not in {"local", "dev"},
        httponly=True,
        samesite="lax",
    )
