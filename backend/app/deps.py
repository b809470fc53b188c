from fastapi import Header, HTTPException, Depends
from .config import settings
from .db import get_conn
from .security import decode_token
from typing import Optional

ROLES = ("admin", "gerente", "cajero", "sync")


def _extract_bearer_token(authorization: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    raise HTTPException(status_code=401, detail="UNAUTHORIZED")


def get_claims(authorization: Optional[str] = Header(None)) -> dict:
    """
    Validate the bearer JWT and return the caller identity:
    {"user_id", "rol", "sucursal_id", "correo"}.
    """
    token = _extract_bearer_token(authorization)
    secret = settings.jwt_secret
    if not secret:
        raise HTTPException(status_code=500, detail="SERVER_MISCONFIG_JWT_SECRET")
    claims = decode_token(token, secret)
    if not claims or not str(claims.get("sub") or "").strip():
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    return {
        "user_id": str(claims["sub"]).strip(),
        "rol": str(claims.get("rol") or "").strip().lower(),
        "sucursal_id": claims.get("sucursal_id"),
        "correo": claims.get("correo"),
    }


def require_any_role(*allowed: str):
    def _dep(claims=Depends(get_claims)):
        rol = claims.get("rol") or ""
        if not rol:
            raise HTTPException(status_code=401, detail="UNAUTHORIZED_NO_ROLE")
        if rol not in allowed:
            raise HTTPException(status_code=403, detail="FORBIDDEN_ROLE")
        return claims
    return _dep


async def get_user_context(claims=Depends(get_claims)) -> dict:
    """
    Role and branch as currently stored for the caller. Tokens live for days, so
    branch-scoped endpoints read the database rather than trusting the claims.
    """
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT u.id_usuario::text AS user_id, u.rol, u.sucursal_id::text AS sucursal_id,
                       s.codigo AS sucursal_codigo
                FROM usuarios u
                LEFT JOIN sucursales s ON s.id_sucursal = u.sucursal_id
                WHERE u.id_usuario::text = %(id)s
                LIMIT 1
                """,
                {"id": claims["user_id"]},
            )
            row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    rol = str(row.get("rol") or "").strip().lower()
    codigo = (row.get("sucursal_codigo") or "").strip() or None
    return {
        "user_id": row["user_id"],
        "rol": rol if rol in ROLES else "user",
        "sucursal_id": row.get("sucursal_id"),
        "sucursal_codigo": codigo,
    }
