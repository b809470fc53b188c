from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, StringConstraints, model_validator
from typing import Annotated, Optional

from ..db import get_conn, set_clause
from ..deps import get_claims, get_user_context
from ..validation import clamp_limit

router = APIRouter(tags=["users"])

PREFERENCE_COLUMNS = """
  usuario_id, notif_stock_bajo, notif_nuevas_ventas, notif_nuevos_proveedores, notif_reportes_diarios,
  created_at, updated_at
"""

ENSURE_PREFERENCES_SQL = """
INSERT INTO user_preferences (usuario_id)
VALUES (%(usuario_id)s)
ON CONFLICT (usuario_id) DO NOTHING
"""


class PreferencesPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notif_stock_bajo: Optional[bool] = None
    notif_nuevas_ventas: Optional[bool] = None
    notif_nuevos_proveedores: Optional[bool] = None
    notif_reportes_diarios: Optional[bool] = None


class ProfilePatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nombre: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]] = None
    telefono: Optional[Annotated[str, StringConstraints(strip_whitespace=True, max_length=20)]] = None
    avatar_url: Optional[Annotated[str, StringConstraints(strip_whitespace=True, pattern=r"^https?://", max_length=500)]] = None

    @model_validator(mode="after")
    def _nombre_not_null(self):
        if "nombre" in self.model_fields_set and self.nombre is None:
            raise ValueError("nombre cannot be null")
        return self


@router.get("/users/me/preferences")
async def get_my_preferences(claims=Depends(get_claims)):
    params = {"usuario_id": claims["user_id"]}
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                # Rows are created lazily with column defaults.
                await cur.execute(ENSURE_PREFERENCES_SQL, params)
                await cur.execute(
                    f"SELECT {PREFERENCE_COLUMNS} FROM user_preferences WHERE usuario_id = %(usuario_id)s",
                    params,
                )
                return {"ok": True, "item": await cur.fetchone()}


@router.patch("/users/me/preferences")
async def patch_my_preferences(data: PreferencesPatch, claims=Depends(get_claims)):
    patch = {k: bool(v) for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if not patch:
        return {"ok": True, "item": None}
    params = {**patch, "usuario_id": claims["user_id"]}
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(ENSURE_PREFERENCES_SQL, params)
                await cur.execute(
                    f"""
                    UPDATE user_preferences
                    SET {set_clause(patch)}, updated_at = now()
                    WHERE usuario_id = %(usuario_id)s
                    RETURNING {PREFERENCE_COLUMNS}
                    """,
                    params,
                )
                return {"ok": True, "item": await cur.fetchone()}


@router.patch("/users/me/profile")
async def patch_my_profile(data: ProfilePatch, claims=Depends(get_claims)):
    patch = data.model_dump(exclude_unset=True)
    if not patch:
        return {"ok": True, "item": None}
    params = {**patch, "usuario_id": claims["user_id"]}
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    f"""
                    UPDATE usuarios
                    SET {set_clause(patch)}, actualizado_en = now()
                    WHERE id_usuario::text = %(usuario_id)s
                    RETURNING id_usuario, nombre, correo AS email, telefono, avatar_url, sucursal_id, last_login_at
                    """,
                    params,
                )
                row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="USER_NOT_FOUND")
    return {"ok": True, "item": row}


@router.get("/usuarios")
async def list_users(q: Optional[str] = None, limit: Optional[str] = None, ctx=Depends(get_user_context)):
    """Lookup list for pickers. Admins see everyone, managers their own branch."""
    if ctx["rol"] not in {"admin", "gerente"}:
        raise HTTPException(status_code=403, detail="FORBIDDEN")
    branch = None
    if ctx["rol"] == "gerente":
        branch = ctx["sucursal_id"]
        if not branch:
            raise HTTPException(status_code=403, detail="USER_HAS_NO_SUCURSAL")
    term = (q or "").strip()
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT u.id_usuario::text AS usuario_id, u.nombre, u.correo AS email
                FROM usuarios u
                WHERE (%(branch)s::text IS NULL OR u.sucursal_id::text = %(branch)s::text)
                  AND (%(q)s = '' OR u.nombre ILIKE %(pattern)s OR u.correo ILIKE %(pattern)s)
                ORDER BY u.nombre ASC, u.id_usuario ASC
                LIMIT %(limit)s
                """,
                {
                    "branch": branch,
                    "q": term,
                    "pattern": f"%{term}%",
                    "limit": clamp_limit(limit, default=50, maximum=200),
                },
            )
            return {"ok": True, "items": await cur.fetchall()}
