from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from ..config import settings
from ..db import get_conn
from ..deps import require_any_role
from ..importers.sync_cursor import cancellations_source, read_cursor

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/estado", dependencies=[Depends(require_any_role("admin", "sync"))])
async def sync_estado(fuente: Optional[str] = None):
    source_id = (fuente or settings.source_id or "").strip()
    if not source_id:
        raise HTTPException(status_code=500, detail="SERVER_MISCONFIG_SOURCE_ID")
    return {
        "ok": True,
        "fuente": source_id,
        "ventas": await read_cursor(source_id),
        "cancelaciones": await read_cursor(cancellations_source(source_id)),
    }


@router.get("/import-log", dependencies=[Depends(require_any_role("admin", "sync"))])
async def list_import_log(
    limit: int = Query(50, ge=1, le=200),
    source_id: Optional[str] = None,
):
    sid = (source_id or "").strip()
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT batch_id::text AS batch_id, received_at, source_id, items, ok, dup, error, details
                FROM import_log
                WHERE (%(source_id)s = '' OR source_id = %(source_id)s)
                ORDER BY received_at DESC
                LIMIT %(limit)s
                """,
                {"source_id": sid, "limit": limit},
            )
            return {"ok": True, "items": await cur.fetchall()}
