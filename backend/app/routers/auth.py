from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Optional
from ..config import settings
from ..db import get_conn
from ..deps import get_claims
from ..jsonlog import json_log
from ..security import hash_password, verify_password, needs_rehash, issue_token

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginIn(BaseModel):
    email: Optional[str] = None
    # Older admin clients post `correo`.
    correo: Optional[str] = None
    password: str = ""


def _public_user(u: dict) -> dict:
    return {
        "id": str(u["id_usuario"]),
        "nombre": u.get("nombre"),
        "email": u.get("correo"),
        "role": u.get("rol") or "cajero",
        "telefono": u.get("telefono"),
        "avatar_url": u.get("avatar_url"),
        "sucursal_id": u.get("sucursal_id"),
    }


def _locked(u: dict) -> bool:
    until = u.get("locked_until")
    return bool(until) and until > datetime.now(timezone.utc)


def _locked_response(u: dict) -> JSONResponse:
    return JSONResponse(
        status_code=423,
        content={"ok": False, "error": "ACCOUNT_LOCKED", "locked_until": u["locked_until"].isoformat()},
    )


@router.post("/login")
async def login(data: LoginIn, request: Request):
    correo = (data.email or data.correo or "").strip().lower()
    if not correo or not data.password:
        raise HTTPException(status_code=400, detail="BAD_REQUEST")
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="SERVER_MISCONFIG_JWT_SECRET")

    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id_usuario, nombre, correo, telefono, avatar_url, sucursal_id,
                       password_hash, activo, rol, must_change_password,
                       failed_login_attempts, locked_until
                FROM usuarios
                WHERE lower(correo) = %(correo)s
                LIMIT 1
                """,
                {"correo": correo},
            )
            u = await cur.fetchone()

            # Same answer for unknown and inactive accounts.
            if not u or not u["activo"]:
                json_log("warning", "auth.login_failed", correo=correo, reason="unknown_or_inactive")
                raise HTTPException(status_code=401, detail="INVALID_CREDENTIALS")
            if _locked(u):
                json_log("warning", "auth.login_failed", correo=correo, reason="locked")
                return _locked_response(u)

            # bcrypt is CPU-bound; keep it off the event loop.
            ok = await run_in_threadpool(verify_password, data.password, u["password_hash"])
            if not ok:
                attempts = int(u.get("failed_login_attempts") or 0) + 1
                lock = attempts >= settings.auth_max_failed_attempts
                await cur.execute(
                    """
                    UPDATE usuarios
                    SET failed_login_attempts = %(attempts)s,
                        locked_until = CASE WHEN %(lock)s THEN now() + (%(minutes)s * interval '1 minute') ELSE NULL END,
                        actualizado_en = now()
                    WHERE id_usuario = %(id)s
                    """,
                    {"attempts": attempts, "lock": lock, "minutes": settings.auth_lock_minutes, "id": u["id_usuario"]},
                )
                json_log("warning", "auth.login_failed", correo=correo, reason="bad_password", attempts=attempts, locked=lock)
            else:
                client_ip = request.client.host if request.client else ""
                await cur.execute(
                    """
                    UPDATE usuarios
                    SET failed_login_attempts = 0,
                        locked_until = NULL,
                        last_login_at = now(),
                        last_login_ip = %(ip)s,
                        last_login_user_agent = %(ua)s,
                        actualizado_en = now()
                    WHERE id_usuario = %(id)s
                    """,
                    {
                        "ip": (client_ip or "")[:64],
                        "ua": (request.headers.get("user-agent") or "")[:512],
                        "id": u["id_usuario"],
                    },
                )
                if needs_rehash(u["password_hash"]):
                    new_hash = await run_in_threadpool(hash_password, data.password)
                    await cur.execute(
                        "UPDATE usuarios SET password_hash = %(h)s WHERE id_usuario = %(id)s",
                        {"h": new_hash, "id": u["id_usuario"]},
                    )

    # Raised after the block so the attempt counter above is committed.
    if not ok:
        raise HTTPException(status_code=401, detail="INVALID_CREDENTIALS")

    token = issue_token(
        {
            "sub": str(u["id_usuario"]),
            "rol": u.get("rol") or "cajero",
            "sucursal_id": str(u["sucursal_id"]) if u.get("sucursal_id") else None,
            "correo": u["correo"],
        },
        settings.jwt_secret,
        expires_minutes=settings.jwt_expires_minutes,
    )
    user = _public_user(u)
    user["last_login_at"] = datetime.now(timezone.utc).isoformat()
    return {"token": token, "user": user, "must_change_password": bool(u.get("must_change_password"))}


@router.get("/me")
async def me(claims=Depends(get_claims)):
    async with get_conn() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id_usuario, nombre, correo, telefono, avatar_url, sucursal_id,
                       activo, rol, must_change_password, locked_until
                FROM usuarios
                WHERE id_usuario::text = %(id)s
                LIMIT 1
                """,
                {"id": claims["user_id"]},
            )
            u = await cur.fetchone()
    if not u or not u["activo"]:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
    if _locked(u):
        return _locked_response(u)
    return {"user": _public_user(u), "must_change_password": bool(u.get("must_change_password"))}
