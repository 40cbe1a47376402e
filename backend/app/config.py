import os
from decimal import Decimal, InvalidOperation
from typing import List, Optional


def _strip_quotes(raw: Optional[str]) -> str:
    # Env files sometimes carry quoted values (TENANT_ROOT_DOMAIN="nexuspoint.com").
    v = (raw or "").strip()
    if len(v) >= 2 and v[0] == v[-1] and v[0] in {'"', "'"}:
        return v[1:-1].strip()
    return v


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _decimal(self, raw: str, *, default: Decimal) -> Decimal:
        try:
            return Decimal((raw or "").strip()) if (raw or "").strip() else default
        except InvalidOperation:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/nexuspoint')
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.jwt_secret = _strip_quotes(os.getenv("JWT_SECRET")) or None
        self.tenant_root_domain = (
            _strip_quotes(os.getenv("TENANT_ROOT_DOMAIN"))
            or _strip_quotes(os.getenv("NEXT_PUBLIC_TENANT_ROOT_DOMAIN"))
            or "nexuspoint.com"
        ).lower()
        self.default_tax_rate = self._decimal(os.getenv("POS_DEFAULT_TAX_RATE", ""), default=Decimal("0.05"))
        try:
            self.session_hours = int((os.getenv("POS_SESSION_HOURS") or "24").strip())
        except ValueError:
            self.session_hours = 24

    @property
    def is_production(self) -> bool:
        return self.env == "production"


settings = Settings()
