from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from ..db import get_conn
from ..deps import get_claims
from ..validation import clamp_limit

router = APIRouter(tags=["productos"])

PRODUCT_COLUMNS = """
  sku, descrip, linea, marca,
  precio1::text AS precio1, impuesto::text AS impuesto, unidad,
  minimo::text AS minimo, maximo::text AS maximo,
  costo_u::text AS costo_u, cost_total::text AS cost_total,
  notes, image_url, u1, u2, u3, ubicacion, movimientos, clasificacion,
  rop::text AS rop, rotacion::text AS rotacion,
  created_at, updated_at
"""


@router.get("/products", dependencies=[Depends(get_claims)])
@router.get("/productos", dependencies=[Depends(get_claims)])
async def list_products(cursor: Optional[str] = None, limit: Optional[str] = None, q: Optional[str] = None):
    """
    Keyset listing ordered by sku. A non-empty `q` switches to search mode
    (sku/description ILIKE) and the cursor is ignored.
    """
    page = clamp_limit(limit, default=100, maximum=200)
    term = (q or "").strip()
    after = "" if term else (cursor or "").strip()
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT {PRODUCT_COLUMNS}
                FROM productos
                WHERE (%(after)s = '' OR sku > %(after)s)
                  AND (%(q)s = '' OR sku ILIKE ('%%' || %(q)s || '%%') OR descrip ILIKE ('%%' || %(q)s || '%%'))
                ORDER BY sku ASC
                LIMIT %(limit)s
                """,
                {"after": after, "q": term, "limit": page},
            )
            rows = await cur.fetchall()
    next_cursor = rows[-1]["sku"] if not term and len(rows) == page else None
    return {"ok": True, "items": rows, "next_cursor": next_cursor, "mode": "search" if term else "cursor"}


@router.get("/products/{sku}", dependencies=[Depends(get_claims)])
@router.get("/productos/{sku}", dependencies=[Depends(get_claims)])
async def get_product(sku: str):
    code = (sku or "").strip()
    if not code:
        raise HTTPException(status_code=400, detail="SKU_REQUERIDO")
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"SELECT {PRODUCT_COLUMNS} FROM productos WHERE sku = %(sku)s LIMIT 1",
                {"sku": code},
            )
            row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="SKU_NO_ENCONTRADO")
    return {"ok": True, "item": row}
