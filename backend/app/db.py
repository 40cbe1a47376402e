import os
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

DATABASE_URL_ADMIN = os.getenv("DATABASE_URL_ADMIN") or os.getenv("DATABASE_URL") or "postgresql://localhost/nexuspoint"
DATABASE_URL = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/nexuspoint"

def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default

# Override in prod via DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE and the DB_ADMIN_POOL_* pair.
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)
_ADMIN_POOL_MIN = _env_int("DB_ADMIN_POOL_MIN_SIZE", 1)
_ADMIN_POOL_MAX = _env_int("DB_ADMIN_POOL_MAX_SIZE", 5)

# One pool for tenant-scoped traffic, one for cross-tenant lookups (auth, signup).
# open=False: pools connect on first use so importing the app never needs a live DB.
_pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=_POOL_MIN,
    max_size=_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)

_admin_pool = ConnectionPool(
    conninfo=DATABASE_URL_ADMIN,
    min_size=_ADMIN_POOL_MIN,
    max_size=_ADMIN_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)

@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and returns the connection to the pool.
    if pool.closed:
        pool.open()
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)

def get_admin_conn():
    return _pooled_conn(_admin_pool)


def close_pools() -> None:
    for pool in (_pool, _admin_pool):
        if not pool.closed:
            pool.close()


def set_tenant_context(conn, tenant_id: str):
    with conn.cursor() as cur:
        # `SET ... = %s` is not valid with the extended query protocol; set_config() is.
        cur.execute(
            "SELECT set_config('app.current_tenant_id', %s::text, true)",
            (str(tenant_id),),
        )
