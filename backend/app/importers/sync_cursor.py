from __future__ import annotations

from typing import Optional

from ..db import get_conn
from ..jsonlog import json_log

# Batches arrive out of order: the stored value may only move forward.
ADVANCE_CURSOR_SQL = """
INSERT INTO estado_sincronizacion (id_fuente, ultimo_id, updated_at)
VALUES (%(id_fuente)s, %(ultimo_id)s, now())
ON CONFLICT (id_fuente) DO UPDATE SET
  ultimo_id  = GREATEST(estado_sincronizacion.ultimo_id, EXCLUDED.ultimo_id),
  updated_at = now()
"""

READ_CURSOR_SQL = "SELECT ultimo_id FROM estado_sincronizacion WHERE id_fuente = %(id_fuente)s"


def cancellations_source(source_id: str) -> str:
    return f"{source_id}:cancelaciones"


async def advance_cursor(source_id: str, candidate_max_id: int, *, connect=get_conn) -> bool:
    """
    Move the resync watermark of `source_id` to max(stored, candidate).

    This is the highest id *seen*, not the highest applied: failed items are retried
    by id from the batch response, relying on upsert idempotence.
    Returns False when the write failed (logged, never raised).
    """
    if candidate_max_id is None or candidate_max_id <= 0:
        return False
    try:
        async with connect() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(ADVANCE_CURSOR_SQL, {"id_fuente": source_id, "ultimo_id": candidate_max_id})
        return True
    except Exception as exc:
        json_log(
            "error",
            "sync_cursor.advance_failed",
            source_id=source_id,
            candidate_max_id=candidate_max_id,
            error=str(exc),
        )
        return False


async def read_cursor(source_id: str, *, connect=get_conn) -> Optional[int]:
    async with connect() as conn:
        async with conn.cursor() as cur:
            await cur.execute(READ_CURSOR_SQL, {"id_fuente": source_id})
            row = await cur.fetchone()
    return int(row["ultimo_id"]) if row else None
