from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.auth import router as auth_router
from .routers.demo import router as demo_router
from .routers.orders import router as orders_router
from .routers.order_discounts import router as order_discounts_router
from .routers.split_payments import router as split_payments_router
from .routers.catalog import router as catalog_router
from .routers.tables import router as tables_router
from .routers.customers import router as customers_router
from .routers.discounts import router as discounts_router
from .routers.cash_sessions import router as cash_sessions_router
from .routers.kitchen import router as kitchen_router
from .routers.invoices import router as invoices_router
from .routers.inventory import router as inventory_router
from .routers.reports import router as reports_router
from .routers.tenant_settings import router as tenant_settings_router
from .routers.employees import router as employees_router
from .config import settings
from .db import get_admin_conn, close_pools
from .logs import json_log

SERVICE_NAME = "nexuspoint-pos"

app = FastAPI(title="NexusPoint POS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _error_content(detail: str, exc: Exception) -> dict:
    content = {"detail": detail}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return content


# Map common DB constraint/cast errors to 4xx so clients get actionable responses.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    # e.g. a malformed uuid in a path parameter
    return JSONResponse(status_code=400, content=_error_content("invalid value", exc))


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("invalid reference", exc))


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=409, content=_error_content("conflict", exc))


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("constraint violation", exc))


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = _error_content("internal error", exc)
    content["request_id"] = rid
    return JSONResponse(status_code=500, content=content)


# Correlation id + structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not path.startswith("/health"):
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=int((time.time() - started) * 1000),
        )
    return response


# The POS frontend runs on tenant subdomains; cookies need credentialed CORS.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Tenant routers carry their own session dependency.
app.include_router(auth_router)
app.include_router(demo_router)
app.include_router(orders_router)
app.include_router(order_discounts_router)
app.include_router(split_payments_router)
app.include_router(catalog_router)
app.include_router(tables_router)
app.include_router(customers_router)
app.include_router(discounts_router)
app.include_router(cash_sessions_router)
app.include_router(kitchen_router)
app.include_router(invoices_router)
app.include_router(inventory_router)
app.include_router(reports_router)
app.include_router(tenant_settings_router)
app.include_router(employees_router)


def _db_health():
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.on_event("startup")
def _startup():
    ok, err = _db_health()
    if ok:
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


@app.get("/")
def root():
    return {"status": "ok", "service": SERVICE_NAME}


def _db_status_response(req: Request, ok_status: str, include_started: bool):
    ok, err = _db_health()
    content = {
        "status": ok_status if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "request_id": _current_request_id(req),
    }
    if include_started:
        content["started_at"] = STARTED_AT_UTC.isoformat()
    if ok:
        return content
    if settings.env in {"local", "dev"}:
        content["error"] = err
    return JSONResponse(status_code=503, content=content)


@app.get("/health")
def health(req: Request):
    return _db_status_response(req, "ok", include_started=True)


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "request_id": _current_request_id(req),
    }


@app.get("/health/ready")
def health_ready(req: Request):
    return _db_status_response(req, "ready", include_started=False)


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
