from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, StringConstraints
from typing import Annotated, Optional

from ..db import get_conn
from ..deps import get_claims, require_any_role
from ..jsonlog import json_log
from ..validation import NullishText, clamp_limit

router = APIRouter(tags=["fichas-tecnicas"])

AttributeName = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, min_length=1, max_length=100)]


class SheetIn(BaseModel):
    notas_generales: NullishText = None


class AttributeIn(BaseModel):
    nombre_atributo: AttributeName
    valor: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
    unidad: NullishText = None


class AttributesIn(BaseModel):
    atributos: list[AttributeIn] = Field(min_length=1)


def _sku(raw: str) -> str:
    code = (raw or "").strip()
    if not code:
        raise HTTPException(status_code=400, detail="SKU_REQUERIDO")
    return code


@router.get("/tech-sheets", dependencies=[Depends(get_claims)])
@router.get("/fichas-tecnicas", dependencies=[Depends(get_claims)])
async def list_tech_sheets(cursor: Optional[str] = None, limit: Optional[str] = None, sku: Optional[str] = None):
    page = clamp_limit(limit, default=100, maximum=200)
    try:
        after = max(int(cursor or 0), 0)
    except ValueError:
        after = 0
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id, sku, notas_generales, created_at, updated_at
                FROM fichas_tecnicas
                WHERE id > %(after)s
                  AND (%(sku)s = '' OR sku = %(sku)s)
                ORDER BY id ASC
                LIMIT %(limit)s
                """,
                {"after": after, "sku": (sku or "").strip(), "limit": page},
            )
            rows = await cur.fetchall()
    next_cursor = rows[-1]["id"] if len(rows) == page else None
    return {"ok": True, "items": rows, "next_cursor": next_cursor}


@router.get("/tech-sheets/{sku}", dependencies=[Depends(get_claims)])
@router.get("/fichas-tecnicas/{sku}", dependencies=[Depends(get_claims)])
@router.get("/productos/{sku}/ficha-tecnica", dependencies=[Depends(get_claims)])
async def get_tech_sheet(sku: str):
    code = _sku(sku)
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id, sku, notas_generales, created_at, updated_at
                FROM fichas_tecnicas
                WHERE sku = %(sku)s
                ORDER BY id DESC
                LIMIT 1
                """,
                {"sku": code},
            )
            sheet = await cur.fetchone()
            if not sheet:
                raise HTTPException(status_code=404, detail="FICHA_NO_ENCONTRADA")
            await cur.execute(
                """
                SELECT id, ficha_id, nombre_atributo, valor, unidad, creado_por, created_at, updated_at
                FROM fichas_tecnicas_atributos
                WHERE ficha_id = %(ficha_id)s
                ORDER BY id ASC
                """,
                {"ficha_id": sheet["id"]},
            )
            attrs = await cur.fetchall()
    return {"ok": True, "ficha": sheet, "atributos": attrs}


@router.put("/productos/{sku}/ficha-tecnica")
async def upsert_tech_sheet(sku: str, data: SheetIn, claims=Depends(require_any_role("admin"))):
    code = _sku(sku)
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO fichas_tecnicas (sku, notas_generales)
                    VALUES (%(sku)s, %(notas)s)
                    ON CONFLICT (sku) DO UPDATE SET
                      notas_generales = EXCLUDED.notas_generales,
                      updated_at = now()
                    RETURNING id, sku, notas_generales
                    """,
                    {"sku": code, "notas": data.notas_generales},
                )
                row = await cur.fetchone()
    json_log("info", "fichas.upsert", sku=row["sku"], user_id=claims["user_id"])
    return {"ok": True, "sku": row["sku"], "ficha_id": row["id"], "notas_generales": row["notas_generales"]}


@router.put("/productos/{sku}/ficha-tecnica/atributos")
async def upsert_tech_sheet_attributes(sku: str, data: AttributesIn, claims=Depends(require_any_role("admin"))):
    """Creates the sheet when missing; attributes are keyed by lower-cased name."""
    code = _sku(sku)
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO fichas_tecnicas (sku)
                    VALUES (%(sku)s)
                    ON CONFLICT (sku) DO UPDATE SET updated_at = now()
                    RETURNING id
                    """,
                    {"sku": code},
                )
                ficha_id = (await cur.fetchone())["id"]
                for attr in data.atributos:
                    await cur.execute(
                        """
                        INSERT INTO fichas_tecnicas_atributos (ficha_id, nombre_atributo, valor, unidad, creado_por)
                        VALUES (%(ficha_id)s, %(nombre)s, %(valor)s, %(unidad)s, %(creado_por)s)
                        ON CONFLICT (ficha_id, nombre_atributo) DO UPDATE SET
                          valor = EXCLUDED.valor,
                          unidad = EXCLUDED.unidad,
                          updated_at = now()
                        """,
                        {
                            "ficha_id": ficha_id,
                            "nombre": attr.nombre_atributo,
                            "valor": attr.valor,
                            "unidad": attr.unidad,
                            "creado_por": claims["user_id"],
                        },
                    )
    json_log("info", "fichas.atributos.upsert", sku=code, count=len(data.atributos))
    return {"ok": True, "sku": code, "ficha_id": ficha_id, "upserted": len(data.atributos)}
