from contextlib import asynccontextmanager

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import AsyncConnectionPool

from .config import settings


def _connect_kwargs() -> dict:
    kwargs = {"row_factory": dict_row}
    # Bound worst-case latency server-side; a timed-out statement raises inside the
    # caller's transaction and rolls back only that unit of work.
    if settings.db_statement_timeout_ms > 0:
        kwargs["options"] = f"-c statement_timeout={settings.db_statement_timeout_ms}"
    return kwargs


# Global pool shared by every request. Opened on app startup (needs a running loop).
# Override sizing in prod via DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE.
_pool = AsyncConnectionPool(
    conninfo=settings.db_url,
    min_size=settings.db_pool_min,
    max_size=settings.db_pool_max,
    kwargs=_connect_kwargs(),
    open=False,
)


async def open_pools() -> None:
    await _pool.open()


@asynccontextmanager
async def get_conn():
    # Semantics of `async with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    async with _pool.connection() as conn:
        yield conn


async def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        await _pool.close()
    except Exception:
        pass


def set_clause(patch: dict) -> str:
    """
    `col = %(col)s, ...` for a partial update. Keys must come from a pydantic
    model's declared fields, never from raw request JSON.
    """
    return ", ".join(f"{k} = %({k})s" for k in patch)
