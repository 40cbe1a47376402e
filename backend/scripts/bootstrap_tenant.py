#!/usr/bin/env python3
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.demo_seed import seed_demo_tenant
from backend.app.security import hash_password
from backend.app.tenant_slug import build_tenant_host, is_valid_tenant_slug, normalize_tenant_slug


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _generate_password() -> str:
    return secrets.token_urlsafe(16)


def main() -> int:
    if not _truthy(os.getenv("BOOTSTRAP_TENANT", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_tenant: missing DATABASE_URL", file=sys.stderr)
        return 2

    slug = normalize_tenant_slug(os.getenv("BOOTSTRAP_TENANT_SLUG", "demo"))
    if not is_valid_tenant_slug(slug):
        print(f"bootstrap_tenant: invalid BOOTSTRAP_TENANT_SLUG {slug!r}", file=sys.stderr)
        return 2
    name = (os.getenv("BOOTSTRAP_TENANT_NAME") or slug).strip()
    seed_demo = _truthy(os.getenv("BOOTSTRAP_SEED_DEMO", "")) or "--seed-demo" in sys.argv[1:]

    email = os.getenv("BOOTSTRAP_OWNER_EMAIL", f"owner@{slug}.local").strip().lower()
    if not email:
        print("bootstrap_tenant: BOOTSTRAP_OWNER_EMAIL is empty", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_OWNER_PASSWORD")
    generated_password = False
    if not password:
        password = _generate_password()
        generated_password = True

    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM tenants WHERE slug = %s", (slug,))
                row = cur.fetchone()
                if row:
                    tenant_id = row["id"]
                else:
                    cur.execute(
                        """
                        INSERT INTO tenants (id, name, slug, owner_email)
                        VALUES (gen_random_uuid(), %s, %s, %s)
                        RETURNING id, industry, currency
                        """,
                        (name, slug, email),
                    )
                    created = cur.fetchone()
                    tenant_id = created["id"]
                    if seed_demo:
                        seed_demo_tenant(cur, tenant_id, created["industry"], created["currency"])

                cur.execute(
                    "SELECT id FROM tenant_users WHERE tenant_id = %s AND lower(email) = %s",
                    (tenant_id, email),
                )
                if cur.fetchone():
                    # Idempotent: an existing owner keeps its password.
                    return 0

                cur.execute(
                    """
                    INSERT INTO tenant_users (id, tenant_id, email, role, password_hash, is_active)
                    VALUES (gen_random_uuid(), %s, %s, 'OWNER', %s, true)
                    """,
                    (tenant_id, email, hash_password(password)),
                )

    print("BOOTSTRAP_TENANT_CREATED")
    print(f"host: {build_tenant_host(slug)}")
    print(f"email: {email}")
    if generated_password:
        print(f"password: {password}")
    else:
        print("password: (provided via BOOTSTRAP_OWNER_PASSWORD)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
