from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from ..db import get_conn
from ..deps import get_claims

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


def _parse_activo(activo: Optional[str], only_active: Optional[str]) -> Optional[bool]:
    raw = (activo or "").strip().lower()
    if raw in {"true", "1"}:
        return True
    if raw in {"false", "0"}:
        return False
    if raw:
        raise HTTPException(status_code=400, detail="INVALID_QUERY_ACTIVO")
    # Legacy flag, only honored when `activo` is absent.
    if only_active == "1":
        return True
    return None


@router.get("", dependencies=[Depends(get_claims)])
async def list_warehouses(activo: Optional[str] = None, only_active: Optional[str] = None):
    """Branches double as warehouses; `id` is the branch code."""
    flag = _parse_activo(activo, only_active)
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT codigo AS id, nombre, direccion, telefono, activo
                FROM sucursales
                WHERE %(activo)s::boolean IS NULL OR activo = %(activo)s::boolean
                ORDER BY nombre ASC
                """,
                {"activo": flag},
            )
            rows = await cur.fetchall()
    missing = sum(1 for r in rows if not r["id"])
    if missing:
        raise HTTPException(status_code=500, detail=f"MISSING_SUCURSALES_CODIGO ({missing})")
    return rows
