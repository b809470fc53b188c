from __future__ import annotations

import json
from typing import Any

from ..db import get_conn
from ..jsonlog import json_log
from .errors import AuditWriteError

INSERT_IMPORT_LOG_SQL = """
INSERT INTO import_log (batch_id, source_id, items, ok, dup, error, details)
VALUES (%(batch_id)s, %(source_id)s, %(items)s, %(ok)s, %(dup)s, %(error)s, %(details)s::jsonb)
"""


async def _write_import_log(params: dict[str, Any], connect) -> None:
    try:
        async with connect() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(INSERT_IMPORT_LOG_SQL, params)
    except Exception as exc:
        raise AuditWriteError(str(exc)) from exc


async def record_batch(
    batch_id: str,
    source_id: str,
    total_items: int,
    ok_count: int,
    dup_count: int,
    error_count: int,
    error_details: list[dict[str, Any]],
    *,
    connect=get_conn,
) -> bool:
    """
    Persist the one-row summary of an import batch.

    Best effort: the audit is diagnostic, so a failed write is logged and the
    caller's response is still returned. Returns whether the row was written.
    """
    params = {
        "batch_id": batch_id,
        "source_id": source_id,
        "items": total_items,
        "ok": ok_count,
        "dup": dup_count,
        "error": error_count,
        "details": json.dumps(error_details, default=str),
    }
    try:
        await _write_import_log(params, connect)
        return True
    except AuditWriteError as exc:
        json_log("error", "import_log.write_failed", batch_id=batch_id, source_id=source_id, error=str(exc))
        return False
