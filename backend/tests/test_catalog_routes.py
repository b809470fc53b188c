import asyncio

import pytest
from fastapi import HTTPException

from backend.app.routers import inventory as inventory_router
from backend.app.routers import products as products_router
from backend.app.routers import warehouses as warehouses_router


def test_inventory_never_reports_negative_stock(scripted_db):
    cur = scripted_db(
        inventory_router,
        [
            [
                {"sku": "A1", "almacen": "CENTRAL", "existencia": -3, "actualizado_el": None},
                {"sku": "B2", "almacen": "CENTRAL", "existencia": "4.50", "actualizado_el": None},
                {"sku": "C3", "almacen": "CENTRAL", "existencia": None, "actualizado_el": None},
            ]
        ],
    )
    out = asyncio.run(inventory_router.list_inventory(sku=" A1 ", almacen="", limit="9999"))
    assert [i["existencia"] for i in out["items"]] == ["0", "4.50", "0"]
    params = cur.executed[0][1]
    assert params == {"sku": "A1", "almacen": None, "limit": 500}


def test_products_cursor_page(scripted_db):
    cur = scripted_db(products_router, [[{"sku": "A1"}, {"sku": "A2"}]])
    out = asyncio.run(products_router.list_products(cursor="A0", limit="2", q=None))
    assert out["mode"] == "cursor"
    assert out["next_cursor"] == "A2"
    assert cur.executed[0][1] == {"after": "A0", "q": "", "limit": 2}


def test_products_short_page_has_no_next_cursor(scripted_db):
    scripted_db(products_router, [[{"sku": "A1"}]])
    out = asyncio.run(products_router.list_products(cursor=None, limit="2", q=None))
    assert out["next_cursor"] is None


def test_products_search_ignores_cursor(scripted_db):
    cur = scripted_db(products_router, [[{"sku": "A1"}, {"sku": "A2"}]])
    out = asyncio.run(products_router.list_products(cursor="ZZ", limit="2", q=" filtro "))
    assert out["mode"] == "search"
    assert out["next_cursor"] is None
    assert cur.executed[0][1]["after"] == ""
    assert cur.executed[0][1]["q"] == "filtro"


def test_product_lookup_errors(scripted_db):
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(products_router.get_product("  "))
    assert exc_info.value.detail == "SKU_REQUERIDO"

    scripted_db(products_router, [[]])
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(products_router.get_product("NOPE"))
    assert exc_info.value.status_code == 404


@pytest.mark.parametrize(
    "activo,only_active,expected",
    [("true", None, True), ("1", None, True), ("FALSE", None, False), ("0", "1", False), (None, "1", True), (None, None, None)],
)
def test_parse_activo(activo, only_active, expected):
    assert warehouses_router._parse_activo(activo, only_active) is expected


def test_parse_activo_rejects_junk():
    with pytest.raises(HTTPException) as exc_info:
        warehouses_router._parse_activo("yes", None)
    assert exc_info.value.detail == "INVALID_QUERY_ACTIVO"


def test_warehouses_require_branch_codes(scripted_db):
    scripted_db(warehouses_router, [[{"id": "centro", "nombre": "Centro"}, {"id": None, "nombre": "Sin código"}]])
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(warehouses_router.list_warehouses(activo=None, only_active=None))
    assert exc_info.value.status_code == 500
