from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from typing import Any

from ..config import settings
from ..deps import require_any_role
from ..importers.batch import import_sales_batch
from ..importers.errors import ConfigurationError, ImportValidationError
from ..importers.upsert import UpsertEngine

router = APIRouter(tags=["ventas"])

IMPORT_ROLES = ("admin", "sync")


def validation_failed(details) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": "VALIDATION_ERROR", "details": details})


def misconfigured(code: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"ok": False, "error": code})


def not_an_array() -> JSONResponse:
    return validation_failed([{"index": None, "loc": [], "msg": "body must be a JSON array", "type": "list_type"}])


@router.post("/ventas/import-batch", dependencies=[Depends(require_any_role(*IMPORT_ROLES))])
@router.post("/sales/import-batch", dependencies=[Depends(require_any_role(*IMPORT_ROLES))])
async def import_ventas(payload: Any = Body(None)):
    if payload is None:
        payload = []
    if not isinstance(payload, list):
        return not_an_array()
    engine = UpsertEngine(branch_id=settings.forced_branch_id)
    try:
        result = await import_sales_batch(payload, source_id=settings.source_id, engine=engine)
    except ImportValidationError as e:
        return validation_failed(e.details())
    except ConfigurationError as e:
        return misconfigured(e.code)
    return result.as_response()
