"""
Teams (`equipos`) and their memberships.

The table is mid-migration from `sucursal_id` (branch uuid) to `sucursal_codigo`
(branch code). Which columns exist is pinned by `SchemaCapabilities`; every
statement touching the branch is built from it.

Visibility: admin sees every team, gerente the teams of its own branch, cajero
only active teams it is an active member of.
"""
import uuid
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, StringConstraints
from typing import Annotated, Optional

from ..db import get_conn
from ..deps import get_user_context
from ..schema_caps import SchemaCapabilities, current_schema_caps
from ..validation import BranchCode, NullishText, clamp_limit

router = APIRouter(prefix="/equipos", tags=["equipos"])

TeamName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class TeamIn(BaseModel):
    nombre: TeamName
    descripcion: NullishText = None
    lider_usuario_id: Optional[uuid.UUID] = None
    # Admin only; managers always create in their own branch.
    sucursal_codigo: Optional[BranchCode] = None
    # Legacy clients still send the branch uuid.
    sucursal_id: NullishText = None


class TeamUpdate(BaseModel):
    nombre: Optional[TeamName] = None
    descripcion: NullishText = None
    # Explicit null removes the leader.
    lider_usuario_id: Optional[uuid.UUID] = None
    sucursal_codigo: Optional[BranchCode] = None
    sucursal_id: NullishText = None
    activo: Optional[bool] = None


class MemberIn(BaseModel):
    usuario_id: uuid.UUID
    rol_equipo: NullishText = None


def _team_id(raw: str) -> int:
    s = (raw or "").strip()
    if not s.isdigit():
        raise HTTPException(status_code=400, detail="BAD_EQUIPO_ID")
    return int(s)


def _uuid_or_none(raw: Optional[str]) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(raw or "").strip())
    except ValueError:
        return None


def _require_role(ctx: dict, *allowed: str) -> None:
    if ctx["rol"] not in allowed:
        raise HTTPException(status_code=403, detail="FORBIDDEN")


def _branch_select(caps: SchemaCapabilities) -> tuple[str, str]:
    cols = []
    if caps.has_sucursal_codigo:
        cols.append("e.sucursal_codigo")
    if caps.has_sucursal_id:
        cols.append("e.sucursal_id::text AS sucursal_id")
    cols.append("s.nombre AS sucursal_nombre")
    join = (
        "LEFT JOIN sucursales s ON s.codigo = e.sucursal_codigo"
        if caps.filters_by_codigo
        else "LEFT JOIN sucursales s ON s.id_sucursal = e.sucursal_id"
    )
    return ", ".join(cols), join


def _manager_branch(caps: SchemaCapabilities, ctx: dict) -> tuple[str, str]:
    """(predicate on `e`, branch value) restricting a gerente to its branch."""
    if caps.filters_by_codigo:
        value, predicate = ctx.get("sucursal_codigo"), "e.sucursal_codigo = %(branch)s"
    else:
        value, predicate = ctx.get("sucursal_id"), "e.sucursal_id::text = %(branch)s"
    if not value:
        raise HTTPException(status_code=403, detail="USER_HAS_NO_SUCURSAL")
    return predicate, value


async def _ensure_managed(cur, caps: SchemaCapabilities, ctx: dict, equipo_id: int) -> None:
    if ctx["rol"] != "gerente":
        return
    predicate, branch = _manager_branch(caps, ctx)
    await cur.execute(
        f"SELECT 1 AS ok FROM equipos e WHERE e.equipo_id = %(id)s AND {predicate} LIMIT 1",
        {"id": equipo_id, "branch": branch},
    )
    if not await cur.fetchone():
        raise HTTPException(status_code=404, detail="NOT_FOUND_OR_FORBIDDEN")


async def _ensure_visible(cur, caps: SchemaCapabilities, ctx: dict, equipo_id: int) -> None:
    if ctx["rol"] == "admin":
        return
    if ctx["rol"] == "gerente":
        await _ensure_managed(cur, caps, ctx, equipo_id)
        return
    if ctx["rol"] == "cajero":
        await cur.execute(
            """
            SELECT 1 AS ok
            FROM equipos e
            JOIN equipo_miembros em ON em.equipo_id = e.equipo_id
            WHERE e.equipo_id = %(id)s AND e.activo = TRUE
              AND em.usuario_id::text = %(user_id)s AND em.activo = TRUE
            LIMIT 1
            """,
            {"id": equipo_id, "user_id": ctx["user_id"]},
        )
        if not await cur.fetchone():
            raise HTTPException(status_code=404, detail="EQUIPO_NOT_FOUND_OR_FORBIDDEN")
        return
    raise HTTPException(status_code=403, detail="FORBIDDEN")


async def _branch_by_code(cur, code: str) -> dict:
    await cur.execute(
        "SELECT id_sucursal, codigo, nombre FROM sucursales WHERE codigo = %(codigo)s LIMIT 1",
        {"codigo": code},
    )
    row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=400, detail="SUCURSAL_CODIGO_INVALIDO")
    return row


async def _code_from_uuid(cur, raw: Optional[str]) -> Optional[str]:
    sid = _uuid_or_none(raw)
    if sid is None:
        return None
    await cur.execute("SELECT codigo FROM sucursales WHERE id_sucursal = %(id)s LIMIT 1", {"id": sid})
    row = await cur.fetchone()
    if not row:
        return None
    return (row["codigo"] or "").strip() or None


async def _resolve_branch_code(cur, ctx: dict, codigo: Optional[str], legacy_id: Optional[str]) -> Optional[str]:
    # Explicit code, then legacy uuid, then the caller's own branch.
    code = codigo or await _code_from_uuid(cur, legacy_id)
    if not code:
        code = ctx.get("sucursal_codigo") or await _code_from_uuid(cur, ctx.get("sucursal_id"))
    return code


def _team_out(row: dict) -> dict:
    return {
        "equipo_id": str(row["equipo_id"]),
        "nombre": row["nombre"],
        "descripcion": row.get("descripcion"),
        "lider_usuario_id": str(row["lider_usuario_id"]) if row.get("lider_usuario_id") else None,
        "lider_nombre": row.get("lider_nombre"),
        "sucursal_codigo": row.get("sucursal_codigo"),
        "sucursal_id": row.get("sucursal_id"),
        "sucursal_nombre": row.get("sucursal_nombre"),
        "activo": bool(row.get("activo")),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }


@router.get("")
async def list_teams(
    cursor: Optional[str] = None,
    limit: Optional[str] = None,
    q: Optional[str] = None,
    include_inactive: Optional[str] = None,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    page = clamp_limit(limit, default=50, maximum=200)
    after = int(cursor) if (cursor or "").strip().isdigit() else 0
    term = (q or "").strip()
    params: dict = {"after": after, "limit": page}
    where = ["e.equipo_id > %(after)s"]

    if not (ctx["rol"] in {"admin", "gerente"} and include_inactive == "1"):
        where.append("e.activo = TRUE")
    if term:
        where.append("e.nombre ILIKE %(pattern)s")
        params["pattern"] = f"%{term}%"

    if ctx["rol"] == "gerente":
        predicate, params["branch"] = _manager_branch(caps, ctx)
        where.append(predicate)
    elif ctx["rol"] == "cajero":
        where.append(
            """EXISTS (
                 SELECT 1 FROM equipo_miembros em
                 WHERE em.equipo_id = e.equipo_id AND em.usuario_id::text = %(user_id)s AND em.activo = TRUE
               )"""
        )
        params["user_id"] = ctx["user_id"]
    elif ctx["rol"] != "admin":
        raise HTTPException(status_code=403, detail="FORBIDDEN")

    branch_cols, branch_join = _branch_select(caps)
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                f"""
                SELECT e.equipo_id, e.nombre, e.descripcion, e.lider_usuario_id, u.nombre AS lider_nombre,
                       {branch_cols}, e.activo, e.created_at, e.updated_at,
                       (SELECT COUNT(*) FROM equipo_miembros emc
                        WHERE emc.equipo_id = e.equipo_id AND emc.activo = TRUE) AS total_miembros
                FROM equipos e
                LEFT JOIN usuarios u ON u.id_usuario = e.lider_usuario_id
                {branch_join}
                WHERE {" AND ".join(where)}
                ORDER BY e.equipo_id ASC
                LIMIT %(limit)s
                """,
                params,
            )
            rows = await cur.fetchall()
    items = [{**_team_out(r), "total_miembros": int(r.get("total_miembros") or 0)} for r in rows]
    next_cursor = items[-1]["equipo_id"] if len(items) == page else None
    return {"ok": True, "items": items, "next_cursor": next_cursor}


@router.get("/{equipo_id}")
async def get_team(
    equipo_id: str,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    tid = _team_id(equipo_id)
    branch_cols, branch_join = _branch_select(caps)
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await _ensure_visible(cur, caps, ctx, tid)
            await cur.execute(
                f"""
                SELECT e.equipo_id, e.nombre, e.descripcion, e.lider_usuario_id, u.nombre AS lider_nombre,
                       {branch_cols}, e.activo, e.created_at, e.updated_at
                FROM equipos e
                LEFT JOIN usuarios u ON u.id_usuario = e.lider_usuario_id
                {branch_join}
                WHERE e.equipo_id = %(id)s
                LIMIT 1
                """,
                {"id": tid},
            )
            team = await cur.fetchone()
            if not team:
                raise HTTPException(status_code=404, detail="NOT_FOUND")
            await cur.execute(
                """
                SELECT em.usuario_id::text AS usuario_id, u.nombre, u.correo AS email,
                       COALESCE(em.rol_equipo, 'miembro') AS rol_equipo, em.fecha_ingreso
                FROM equipo_miembros em
                JOIN usuarios u ON u.id_usuario = em.usuario_id
                WHERE em.equipo_id = %(id)s AND em.activo = TRUE
                ORDER BY em.fecha_ingreso ASC
                """,
                {"id": tid},
            )
            members = await cur.fetchall()
    out = _team_out(team)
    out["miembros"] = members
    out["total_miembros"] = len(members)
    return {"ok": True, "equipo": out}


@router.post("", status_code=201)
async def create_team(
    data: TeamIn,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    _require_role(ctx, "admin", "gerente")
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                if ctx["rol"] == "gerente":
                    code = ctx.get("sucursal_codigo")
                    if not code:
                        raise HTTPException(status_code=400, detail="USER_HAS_NO_SUCURSAL")
                else:
                    code = await _resolve_branch_code(cur, ctx, data.sucursal_codigo, data.sucursal_id)
                if not code:
                    raise HTTPException(status_code=400, detail="SUCURSAL_REQUIRED")
                branch = await _branch_by_code(cur, code)

                values = {
                    "nombre": data.nombre,
                    "descripcion": data.descripcion,
                    "lider_usuario_id": data.lider_usuario_id,
                }
                if caps.has_sucursal_codigo:
                    values["sucursal_codigo"] = branch["codigo"]
                # Legacy and migration schemas still need the uuid column filled.
                if caps.has_sucursal_id and (caps.sucursal_id_not_null or not caps.has_sucursal_codigo):
                    values["sucursal_id"] = branch["id_sucursal"]

                cols = ", ".join(values)
                placeholders = ", ".join(f"%({k})s" for k in values)
                await cur.execute(
                    f"INSERT INTO equipos ({cols}) VALUES ({placeholders}) RETURNING equipo_id",
                    values,
                )
                row = await cur.fetchone()
    return {"ok": True, "equipo_id": str(row["equipo_id"])}


@router.patch("/{equipo_id}")
async def update_team(
    equipo_id: str,
    data: TeamUpdate,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    _require_role(ctx, "admin", "gerente")
    tid = _team_id(equipo_id)
    patch = data.model_dump(exclude_unset=True)
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await _ensure_managed(cur, caps, ctx, tid)

                sets = []
                params: dict = {"id": tid}
                for col in ("nombre", "descripcion", "lider_usuario_id", "activo"):
                    if col in patch:
                        if col in {"nombre", "activo"} and patch[col] is None:
                            raise HTTPException(status_code=400, detail=f"{col.upper()}_REQUIRED")
                        sets.append(f"{col} = %({col})s")
                        params[col] = patch[col]

                if "sucursal_codigo" in patch or "sucursal_id" in patch:
                    if ctx["rol"] != "admin":
                        raise HTTPException(status_code=403, detail="FORBIDDEN_SUCURSAL_CHANGE")
                    code = await _resolve_branch_code(cur, ctx, patch.get("sucursal_codigo"), patch.get("sucursal_id"))
                    if not code:
                        raise HTTPException(status_code=400, detail="SUCURSAL_REQUIRED")
                    branch = await _branch_by_code(cur, code)
                    if caps.has_sucursal_codigo:
                        sets.append("sucursal_codigo = %(sucursal_codigo)s")
                        params["sucursal_codigo"] = branch["codigo"]
                    if caps.has_sucursal_id:
                        sets.append("sucursal_id = %(sucursal_id)s")
                        params["sucursal_id"] = branch["id_sucursal"]

                if not sets:
                    raise HTTPException(status_code=400, detail="NO_FIELDS")
                if caps.has_updated_at:
                    sets.append("updated_at = now()")

                await cur.execute(
                    f"UPDATE equipos SET {', '.join(sets)} WHERE equipo_id = %(id)s RETURNING equipo_id",
                    params,
                )
                row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return {"ok": True, "equipo_id": str(row["equipo_id"])}


@router.delete("/{equipo_id}")
async def deactivate_team(
    equipo_id: str,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    _require_role(ctx, "admin")
    tid = _team_id(equipo_id)
    touch = ", updated_at = now()" if caps.has_updated_at else ""
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await cur.execute(
                    f"UPDATE equipos SET activo = FALSE{touch} WHERE equipo_id = %(id)s RETURNING equipo_id",
                    {"id": tid},
                )
                row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return {"ok": True, "equipo_id": str(row["equipo_id"])}


@router.post("/{equipo_id}/miembros", status_code=201)
async def add_member(
    equipo_id: str,
    data: MemberIn,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    _require_role(ctx, "admin", "gerente")
    tid = _team_id(equipo_id)
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await _ensure_managed(cur, caps, ctx, tid)
                await cur.execute("SELECT 1 AS ok FROM usuarios WHERE id_usuario = %(id)s LIMIT 1", {"id": data.usuario_id})
                if not await cur.fetchone():
                    raise HTTPException(status_code=400, detail="USUARIO_NOT_FOUND")
                # Re-adding a removed member reactivates the row.
                await cur.execute(
                    """
                    INSERT INTO equipo_miembros (equipo_id, usuario_id, rol_equipo, activo)
                    VALUES (%(equipo_id)s, %(usuario_id)s, %(rol_equipo)s, TRUE)
                    ON CONFLICT (equipo_id, usuario_id) DO UPDATE SET
                      rol_equipo = EXCLUDED.rol_equipo,
                      activo = TRUE
                    RETURNING equipo_id, usuario_id::text AS usuario_id
                    """,
                    {"equipo_id": tid, "usuario_id": data.usuario_id, "rol_equipo": data.rol_equipo or "miembro"},
                )
                row = await cur.fetchone()
    return {"ok": True, "equipo_id": str(row["equipo_id"]), "usuario_id": row["usuario_id"]}


@router.delete("/{equipo_id}/miembros/{usuario_id}")
async def remove_member(
    equipo_id: str,
    usuario_id: str,
    ctx=Depends(get_user_context),
    caps: SchemaCapabilities = Depends(current_schema_caps),
):
    _require_role(ctx, "admin", "gerente")
    tid = _team_id(equipo_id)
    member = _uuid_or_none(usuario_id)
    if member is None:
        raise HTTPException(status_code=400, detail="BAD_USUARIO_ID")
    async with get_conn() as conn:
        async with conn.transaction():
            async with conn.cursor() as cur:
                await _ensure_managed(cur, caps, ctx, tid)
                await cur.execute(
                    """
                    UPDATE equipo_miembros
                    SET activo = FALSE
                    WHERE equipo_id = %(equipo_id)s AND usuario_id = %(usuario_id)s
                    RETURNING equipo_id, usuario_id::text AS usuario_id
                    """,
                    {"equipo_id": tid, "usuario_id": member},
                )
                row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return {"ok": True, "equipo_id": str(row["equipo_id"]), "usuario_id": row["usuario_id"]}
