from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.auth import router as auth_router
from .routers.sales import router as sales_router
from .routers.cancellations import router as cancellations_router
from .routers.sync import router as sync_router
from .routers.products import router as products_router
from .routers.inventory import router as inventory_router
from .routers.tech_sheets import router as tech_sheets_router
from .routers.teams import router as teams_router
from .routers.settings import router as settings_router
from .routers.users import router as users_router
from .routers.warehouses import router as warehouses_router
from .config import settings
from .db import get_conn, open_pools, close_pools
from .jsonlog import json_log
from .schema_caps import load_schema_caps
from .validation import PAYMENT_METHODS

app = FastAPI(title="Moncar POS Sync API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _debug_fields(exc: Exception) -> dict:
    return {"error": str(exc)} if settings.env in {"local", "dev"} else {}


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# Constraint/cast errors raised outside the import loop become 4xx. The import
# endpoints never reach these: per-item DB errors land in the batch summary.
DB_ERROR_RESPONSES = (
    # e.g. malformed uuid or enum cast
    (pg_errors.InvalidTextRepresentation, 400, "invalid value"),
    (pg_errors.ForeignKeyViolation, 400, "invalid reference"),
    (pg_errors.UniqueViolation, 409, "conflict"),
    (pg_errors.CheckViolation, 400, "constraint violation"),
)


def _db_error_handler(status_code: int, detail: str):
    def _handler(_req: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": detail, **_debug_fields(exc)})
    return _handler


for _exc_type, _status, _detail in DB_ERROR_RESPONSES:
    app.add_exception_handler(_exc_type, _db_error_handler(_status, _detail))


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
    return JSONResponse(status_code=500, content={"detail": "internal error", "request_id": rid, **_debug_fields(exc)})


# Probes hit these every few seconds; keep them out of the request log.
QUIET_PATHS = {"/health", "/readiness"}


@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.perf_counter()
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", **fields, duration_ms=_elapsed_ms(started), error=str(exc))
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if fields["path"] not in QUIET_PATHS:
        json_log("info", "http.request", **fields, status_code=response.status_code, duration_ms=_elapsed_ms(started))
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(sales_router)
app.include_router(cancellations_router)
app.include_router(sync_router)
app.include_router(products_router)
app.include_router(inventory_router)
app.include_router(tech_sheets_router)
app.include_router(teams_router)
app.include_router(settings_router)
app.include_router(users_router)
app.include_router(warehouses_router)


@app.on_event("startup")
async def _startup():
    # Fail fast on a SCHEMA_VERSION this build does not know.
    caps = load_schema_caps(settings.schema_version)
    await open_pools()
    ok, _ms, err = await _db_probe()
    if ok:
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version, schema_version=caps.version)
    else:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)
    if not settings.source_id:
        json_log("warning", "startup.source_id_missing", env=settings.env)


@app.on_event("shutdown")
async def _shutdown():
    await close_pools()


async def _db_probe():
    started = time.perf_counter()
    try:
        async with get_conn() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                await cur.fetchone()
        return True, _elapsed_ms(started), None
    except Exception as exc:
        return False, _elapsed_ms(started), str(exc)


@app.get("/health")
async def health(req: Request):
    # Liveness only: never touches the database.
    return {"ok": True, "status": "up", "service": "pos-sync", "request_id": _current_request_id(req)}


@app.get("/readiness")
async def readiness(req: Request):
    ok, ms, err = await _db_probe()
    if not ok:
        content = {"ok": False, "status": "unready", "db": "down", "error": "DB_UNAVAILABLE", "request_id": _current_request_id(req)}
        if settings.env in {"local", "dev"}:
            content["detail"] = err
        return JSONResponse(status_code=503, content=content)
    return {"ok": True, "status": "ready", "db": "up", "duration_ms": ms}


@app.get("/health/db")
async def health_db(req: Request):
    ok, ms, err = await _db_probe()
    if not ok:
        content = {"ok": False, "db": "down", "request_id": _current_request_id(req)}
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=500, content=content)
    return {"ok": True, "db": "up", "duration_ms": ms}


@app.get("/meta")
def meta():
    return {
        "service": "pos-sync",
        "version": settings.api_version,
        "env": settings.env,
        "schema_version": settings.schema_version,
        "payment_methods": list(PAYMENT_METHODS),
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
