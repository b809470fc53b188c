from decimal import Decimal
from fastapi import APIRouter, Depends
from typing import Optional

from ..db import get_conn
from ..deps import get_claims
from ..validation import clamp_limit

router = APIRouter(prefix="/inventario", tags=["inventario"])


@router.get("", dependencies=[Depends(get_claims)])
async def list_inventory(sku: Optional[str] = None, almacen: Optional[str] = None, limit: Optional[str] = None):
    page = clamp_limit(limit, default=100, maximum=500)
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT sku, almacen, existencia, actualizado_el
                FROM inventario
                WHERE (%(sku)s::text IS NULL OR sku = %(sku)s::text)
                  AND (%(almacen)s::text IS NULL OR almacen = %(almacen)s::text)
                ORDER BY sku, almacen
                LIMIT %(limit)s
                """,
                {"sku": (sku or "").strip() or None, "almacen": (almacen or "").strip() or None, "limit": page},
            )
            rows = await cur.fetchall()
    items = []
    for r in rows:
        qty = Decimal(str(r["existencia"] if r["existencia"] is not None else 0))
        # Negative stock is a POS artifact; clients only ever see zero.
        items.append(
            {
                "sku": r["sku"],
                "almacen": r["almacen"],
                "existencia": str(max(qty, Decimal("0"))),
                "actualizado_el": r["actualizado_el"],
            }
        )
    return {"ok": True, "items": items}
