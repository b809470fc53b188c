from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from typing import Annotated, Optional

from ..db import get_conn, set_clause
from ..deps import require_any_role

router = APIRouter(prefix="/settings", tags=["settings"])

_managers = Depends(require_any_role("admin", "gerente"))


CompanyName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
TaxId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=13)]
Address = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Phone = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=20)]
SkuFormat = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]
Url = Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^https?://", max_length=500)]


def _reject_nulls(model: BaseModel, nullable: tuple[str, ...] = ()):
    for name in model.model_fields_set:
        if name not in nullable and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")
    return model


class CompanyPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nombre_empresa: Optional[CompanyName] = None
    rfc: Optional[TaxId] = None
    direccion: Optional[Address] = None
    telefono: Optional[Phone] = None
    # Explicit null clears the logo.
    logo_url: Optional[Url] = None

    @model_validator(mode="after")
    def _nulls(self):
        return _reject_nulls(self, nullable=("logo_url",))


class InventoryPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    stock_minimo_global: Optional[int] = Field(default=None, ge=0)
    alertas_activas: Optional[bool] = None
    formato_sku: Optional[SkuFormat] = None

    @model_validator(mode="after")
    def _nulls(self):
        return _reject_nulls(self)


async def _read_singleton(table: str):
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(f"SELECT * FROM {table} WHERE id = 1")
            return {"ok": True, "item": await cur.fetchone()}


async def _patch_singleton(table: str, patch: dict):
    if not patch:
        return {"ok": True, "item": None}
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(f"UPDATE {table} SET {set_clause(patch)} WHERE id = 1 RETURNING *", patch)
                return {"ok": True, "item": await cur.fetchone()}


@router.get("/company", dependencies=[_managers])
async def get_company_settings():
    return await _read_singleton("company_settings")


@router.patch("/company", dependencies=[_managers])
async def patch_company_settings(data: CompanyPatch):
    return await _patch_singleton("company_settings", data.model_dump(exclude_unset=True))


@router.get("/inventory", dependencies=[_managers])
async def get_inventory_settings():
    return await _read_singleton("inventory_settings")


@router.patch("/inventory", dependencies=[_managers])
async def patch_inventory_settings(data: InventoryPatch):
    return await _patch_singleton("inventory_settings", data.model_dump(exclude_unset=True))
