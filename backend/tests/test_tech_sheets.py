import asyncio

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from backend.app.routers import tech_sheets as tech_sheets_router
from backend.app.routers.tech_sheets import AttributesIn, SheetIn


def test_attribute_names_are_normalized():
    data = AttributesIn(atributos=[{"nombre_atributo": "  Voltaje ", "valor": " 12 ", "unidad": " V "}])
    attr = data.atributos[0]
    assert (attr.nombre_atributo, attr.valor, attr.unidad) == ("voltaje", "12", "V")


def test_attribute_list_cannot_be_empty():
    with pytest.raises(ValidationError):
        AttributesIn(atributos=[])


def test_missing_sheet(scripted_db):
    scripted_db(tech_sheets_router, [[]])
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(tech_sheets_router.get_tech_sheet("A1"))
    assert exc_info.value.detail == "FICHA_NO_ENCONTRADA"


def test_sheet_with_attributes(scripted_db):
    scripted_db(
        tech_sheets_router,
        [[{"id": 4, "sku": "A1", "notas_generales": None}], [{"id": 1, "ficha_id": 4, "nombre_atributo": "voltaje"}]],
    )
    out = asyncio.run(tech_sheets_router.get_tech_sheet(" A1 "))
    assert out["ficha"]["id"] == 4
    assert out["atributos"][0]["nombre_atributo"] == "voltaje"


def test_blank_sku_is_rejected(scripted_db):
    cur = scripted_db(tech_sheets_router, [])
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(tech_sheets_router.upsert_tech_sheet(" ", SheetIn(), claims={"user_id": "u-1"}))
    assert exc_info.value.detail == "SKU_REQUERIDO"
    assert cur.executed == []


def test_attribute_upsert_creates_sheet_first(scripted_db):
    cur = scripted_db(tech_sheets_router, [[{"id": 9}]])
    data = AttributesIn(atributos=[{"nombre_atributo": "Color", "valor": "rojo"}, {"nombre_atributo": "peso", "valor": "2"}])
    out = asyncio.run(tech_sheets_router.upsert_tech_sheet_attributes("A1", data, claims={"user_id": "u-1"}))
    assert out == {"ok": True, "sku": "A1", "ficha_id": 9, "upserted": 2}
    assert "INSERT INTO fichas_tecnicas (sku)" in cur.executed[0][0]
    assert [p["nombre"] for _, p in cur.executed[1:]] == ["color", "peso"]
    assert all(p["ficha_id"] == 9 and p["creado_por"] == "u-1" for _, p in cur.executed[1:])
