"""
Batch import of POS sales and cancellations.

Each entity is written in its own transaction (`run_atomic`): a bad record is
rolled back and reported by natural id while the rest of the batch is kept.
Items are applied sequentially, in submission order.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..db import get_conn
from ..jsonlog import json_log
from .audit import record_batch
from .errors import ConfigurationError, ItemPersistenceError
from .row_mapper import map_cancellations, map_sales
from .sync_cursor import advance_cursor, cancellations_source
from .upsert import UpsertEngine


@dataclass
class BatchResult:
    ok: int = 0
    dup: int = 0
    error: int = 0
    batch_id: Optional[str] = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    max_id: int = 0

    def as_response(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "dup": self.dup,
            "error": self.error,
            "batch_id": self.batch_id,
            "errors": list(self.errors),
        }


async def run_atomic(fn: Callable[..., Awaitable[Any]], *args, connect=get_conn):
    """
    Run `fn(cur, *args)` inside one transaction on one pooled connection.

    Commits when `fn` returns, rolls back and re-raises when it raises; the
    connection goes back to the pool either way.
    """
    async with connect() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                return await fn(cur, *args)


def _failure_reason(exc: Exception) -> str:
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    detail = getattr(diag, "message_detail", None) if diag is not None else None
    if primary:
        return f"{primary} ({detail})" if detail else primary
    return str(exc) or exc.__class__.__name__


async def _apply_one(apply, item, natural_id: int, connect) -> None:
    try:
        await run_atomic(apply, item, connect=connect)
    except Exception as exc:
        raise ItemPersistenceError(natural_id, _failure_reason(exc)) from exc


async def _run_items(
    items: Sequence[Any],
    *,
    natural_id: Callable[[Any], int],
    id_key: str,
    apply,
    log_event: str,
    connect,
) -> BatchResult:
    result = BatchResult(batch_id=str(uuid.uuid4()))
    for item in items:
        nid = natural_id(item)
        # Watermark tracks every id seen, failed or not.
        result.max_id = max(result.max_id, nid)
        try:
            await _apply_one(apply, item, nid, connect)
            result.ok += 1
        except ItemPersistenceError as exc:
            result.error += 1
            result.errors.append({id_key: exc.natural_id, "reason": exc.reason})
            json_log("warning", log_event, **{id_key: exc.natural_id, "reason": exc.reason})
    return result


def _require_source_id(source_id: Optional[str]) -> str:
    sid = (source_id or "").strip()
    if not sid:
        raise ConfigurationError("SERVER_MISCONFIG_SOURCE_ID")
    return sid


async def import_sales_batch(
    raw_items: Sequence[Any],
    *,
    source_id: Optional[str],
    engine: UpsertEngine,
    connect=get_conn,
) -> BatchResult:
    """
    Raises ImportValidationError (nothing written) or ConfigurationError (before any
    DB access). Otherwise always returns a summary, even when every item failed.
    """
    if not raw_items:
        return BatchResult()
    sales = map_sales(raw_items)
    sid = _require_source_id(source_id)

    result = await _run_items(
        sales,
        natural_id=lambda s: s.venta_id,
        id_key="id_venta",
        apply=engine.upsert_sale,
        log_event="ventas.import.item_failed",
        connect=connect,
    )

    await record_batch(result.batch_id, sid, len(sales), result.ok, result.dup, result.error, result.errors, connect=connect)
    await advance_cursor(sid, result.max_id, connect=connect)
    json_log(
        "info",
        "import.batch_done",
        kind="ventas",
        batch_id=result.batch_id,
        source_id=sid,
        items=len(sales),
        ok=result.ok,
        error=result.error,
    )
    return result


async def import_cancellations_batch(
    raw_items: Sequence[Any],
    *,
    source_id: Optional[str],
    engine: UpsertEngine,
    connect=get_conn,
) -> BatchResult:
    if not raw_items:
        return BatchResult()
    cancellations = map_cancellations(raw_items)
    sid = _require_source_id(source_id)

    result = await _run_items(
        cancellations,
        natural_id=lambda c: c.id_cancelacion_origen,
        id_key="id_cancelacion_origen",
        apply=engine.upsert_cancellation,
        log_event="cancelaciones.import.item_failed",
        connect=connect,
    )

    await record_batch(
        result.batch_id, sid, len(cancellations), result.ok, result.dup, result.error, result.errors, connect=connect
    )
    await advance_cursor(cancellations_source(sid), result.max_id, connect=connect)
    json_log(
        "info",
        "import.batch_done",
        kind="cancelaciones",
        batch_id=result.batch_id,
        source_id=sid,
        items=len(cancellations),
        ok=result.ok,
        error=result.error,
    )
    return result
