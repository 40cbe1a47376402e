from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional
import json

from ..db import get_admin_conn
from ..demo_seed import seed_demo_tenant
from ..logs import json_log
from ..rate_limit import enforce_rate_limit, signup_limiter, slug_lookup_limiter
from ..security import hash_password
from ..tenant_slug import build_tenant_host, find_available_tenant_slug, is_valid_tenant_slug
from ..validation import CompanySize, Email, TenantIndustry

router = APIRouter(prefix="/demo", tags=["demo"])
SIGNUP_RATE = "5/minute"
SLUG_LOOKUP_RATE = "30/minute"


class DemoSignupIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    company_name: str = Field(min_length=2, max_length=120)
    email: Email
    phone: Optional[str] = Field(default=None, max_length=40)
    country: str = Field(default="AE", min_length=2, max_length=56)
    language: str = Field(default="en", min_length=2, max_length=10)
    company_size: CompanySize = "S1_5"
    industry: TenantIndustry = "RESTAURANT"
    desired_slug: Optional[str] = Field(default=None, max_length=63)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)


@router.post("/signup", status_code=201)
def demo_signup(data: DemoSignupIn, request: Request):
    ip = enforce_rate_limit(signup_limiter, request, SIGNUP_RATE)
    first_name = data.first_name.strip()
    last_name = data.last_name.strip()
    company_name = data.company_name.strip()
    phone = (data.phone or "").strip() or None

    with get_admin_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                slug = find_available_tenant_slug(cur, company_name, data.desired_slug)
                if not is_valid_tenant_slug(slug["suggested_slug"]):
                    raise HTTPException(
                        status_code=400,
                        detail="unable to generate a valid demo link, please adjust your company name",
                    )
                cur.execute(
                    """
                    INSERT INTO tenants
                      (id, name, slug, country, language, company_size, industry,
                       owner_first_name, owner_last_name, owner_email, owner_phone)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id, name, slug, industry, theme, currency
                    """,
                    (
                        company_name,
                        slug["suggested_slug"],
                        data.country.strip(),
                        data.language.strip(),
                        data.company_size,
                        data.industry,
                        first_name,
                        last_name,
                        data.email,
                        phone,
                    ),
                )
                tenant = cur.fetchone()
                cur.execute(
                    """
                    INSERT INTO tenant_users
                      (id, tenant_id, email, first_name, last_name, phone, role, password_hash)
                    VALUES
                      (gen_random_uuid(), %s, %s, %s, %s, %s, 'OWNER', %s)
                    RETURNING id
                    """,
                    (
                        tenant["id"],
                        data.email,
                        first_name,
                        last_name,
                        phone,
                        hash_password(data.password) if data.password else None,
                    ),
                )
                owner_id = cur.fetchone()["id"]

                seed_demo_tenant(cur, tenant["id"], tenant["industry"], tenant["currency"])

                cur.execute(
                    """
                    INSERT INTO audit_logs (id, tenant_id, user_id, action, entity_type, entity_id, details, ip_address, user_agent)
                    VALUES (gen_random_uuid(), %s, %s, 'demo_signup', 'tenant', %s, %s::jsonb, %s, %s)
                    """,
                    (
                        tenant["id"],
                        owner_id,
                        tenant["id"],
                        json.dumps(
                            {
                                "tenant_slug": tenant["slug"],
                                "owner_email": data.email,
                                "industry": data.industry,
                                "company_size": data.company_size,
                            }
                        ),
                        ip,
                        request.headers.get("user-agent"),
                    ),
                )

    json_log("info", "demo.signup", tenant_slug=tenant["slug"], industry=data.industry, client_ip=ip)
    return JSONResponse(
        status_code=201,
        content={
            "tenant": {
                "id": str(tenant["id"]),
                "name": tenant["name"],
                "slug": tenant["slug"],
                "industry": tenant["industry"],
                "theme": tenant["theme"],
                "currency": tenant["currency"],
            },
            "host": build_tenant_host(tenant["slug"]),
            "redirect_url": f"/t/{tenant['slug']}/welcome",
            "is_slug_adjusted": not slug["is_base_available"],
            "base_slug": slug["base_slug"],
            "can_login": bool(data.password),
        },
    )


@router.get("/tenant-slug")
def tenant_slug_lookup(request: Request, company_name: str = "", desired_slug: Optional[str] = None):
    enforce_rate_limit(slug_lookup_limiter, request, SLUG_LOOKUP_RATE)
    if not company_name.strip() and not (desired_slug or "").strip():
        raise HTTPException(status_code=400, detail="company_name or desired_slug is required")
    with get_admin_conn() as conn:
        with conn.cursor() as cur:
            res = find_available_tenant_slug(cur, company_name, desired_slug)
    valid = is_valid_tenant_slug(res["suggested_slug"])
    return {
        **res,
        "is_valid": valid,
        "host": build_tenant_host(res["suggested_slug"]) if valid else None,
    }
