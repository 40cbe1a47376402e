import re
import time
import unicodedata
from typing import Optional

from .config import settings

MAX_TENANT_SLUG_LENGTH = 63
_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_MAX_SUFFIX = 50
_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def normalize_tenant_slug(raw: Optional[str]) -> str:
    return (raw or "").strip().lower()


def is_valid_tenant_slug(slug: Optional[str]) -> bool:
    return bool(slug) and bool(_SLUG_RE.match(slug))


def slugify_company_name(name: Optional[str]) -> str:
    s = unicodedata.normalize("NFKD", (name or "").strip().lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.replace("&", " and ")
    s = _NON_ALNUM_RE.sub("-", s).strip("-")
    return s[:MAX_TENANT_SLUG_LENGTH].rstrip("-")


def build_tenant_host(slug: str, root_domain: Optional[str] = None) -> str:
    return f"{slug}.{root_domain or settings.tenant_root_domain}"


def _with_suffix(base: str, n: int) -> str:
    suffix = f"-{n}"
    keep = max(1, MAX_TENANT_SLUG_LENGTH - len(suffix))
    return base[:keep].rstrip("-") + suffix


def _slug_taken(cur, slug: str) -> bool:
    cur.execute("SELECT 1 FROM tenants WHERE slug = %s", (slug,))
    return cur.fetchone() is not None


def find_available_tenant_slug(cur, company_name: str, desired_slug: Optional[str] = None) -> dict:
    """
    Pick a free tenant slug, preferring the desired slug over the company name.

    Tries `<base>`, then `<base>-2` .. `<base>-50`, then a time-based suffix.
    An invalid base is returned as-is with `is_base_available` False so callers
    can surface the problem instead of silently renaming.
    """
    source = desired_slug if (desired_slug or "").strip() else company_name
    base = slugify_company_name(source)
    if not is_valid_tenant_slug(base):
        return {"base_slug": base, "suggested_slug": base, "is_base_available": False}

    if not _slug_taken(cur, base):
        return {"base_slug": base, "suggested_slug": base, "is_base_available": True}

    for n in range(2, _MAX_SUFFIX + 1):
        candidate = _with_suffix(base, n)
        if is_valid_tenant_slug(candidate) and not _slug_taken(cur, candidate):
            return {"base_slug": base, "suggested_slug": candidate, "is_base_available": False}

    stamp = to_base36(int(time.time() * 1000))[-4:]
    fallback = f"{base[:50].rstrip('-')}-{stamp}"[:MAX_TENANT_SLUG_LENGTH]
    return {"base_slug": base, "suggested_slug": fallback, "is_base_available": False}
