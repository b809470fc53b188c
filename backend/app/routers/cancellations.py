from fastapi import APIRouter, Body, Depends
from typing import Any

from ..config import settings
from ..deps import require_any_role
from ..importers.batch import import_cancellations_batch
from ..importers.errors import ConfigurationError, ImportValidationError
from ..importers.upsert import UpsertEngine
from .sales import IMPORT_ROLES, misconfigured, not_an_array, validation_failed

router = APIRouter(tags=["cancelaciones"])


@router.post("/cancelaciones/import-batch", dependencies=[Depends(require_any_role(*IMPORT_ROLES))])
@router.post("/cancellations/import-batch", dependencies=[Depends(require_any_role(*IMPORT_ROLES))])
async def import_cancelaciones(payload: Any = Body(None)):
    if payload is None:
        payload = []
    if not isinstance(payload, list):
        return not_an_array()
    engine = UpsertEngine(branch_id=settings.forced_branch_id)
    try:
        result = await import_cancellations_batch(payload, source_id=settings.source_id, engine=engine)
    except ImportValidationError as e:
        return validation_failed(e.details())
    except ConfigurationError as e:
        return misconfigured(e.code)
    out = result.as_response()
    out["max_id_cancelacion"] = result.max_id
    return out
