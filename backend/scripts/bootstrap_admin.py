#!/usr/bin/env python3
import os
import secrets
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_password


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _generate_password() -> str:
    # URL-safe and copy/paste friendly.
    return secrets.token_urlsafe(16)


def main(connect=psycopg.connect) -> int:
    if not _truthy(os.getenv("BOOTSTRAP_ADMIN", "")):
        return 0

    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        print("bootstrap_admin: missing DATABASE_URL", file=sys.stderr)
        return 2

    email = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@moncar.local").strip().lower()
    if not email:
        print("bootstrap_admin: BOOTSTRAP_ADMIN_EMAIL is empty", file=sys.stderr)
        return 2

    password = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
    generated_password = False
    if not password:
        password = _generate_password()
        generated_password = True

    nombre = os.getenv("BOOTSTRAP_ADMIN_NAME", "Administrador").strip() or "Administrador"
    branch_code = (os.getenv("BOOTSTRAP_ADMIN_BRANCH") or "").strip() or None

    with connect(db_url, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id_usuario FROM usuarios WHERE lower(correo) = %(correo)s", {"correo": email})
                if cur.fetchone():
                    # Idempotent: never touch an existing account (or its password).
                    return 0

                sucursal_id = None
                if branch_code:
                    cur.execute("SELECT id_sucursal FROM sucursales WHERE codigo = %(codigo)s", {"codigo": branch_code})
                    row = cur.fetchone()
                    if not row:
                        print(f"bootstrap_admin: unknown branch code {branch_code!r}", file=sys.stderr)
                        return 2
                    sucursal_id = row["id_sucursal"]

                cur.execute(
                    """
                    INSERT INTO usuarios (nombre, correo, password_hash, rol, activo, must_change_password, sucursal_id)
                    VALUES (%(nombre)s, %(correo)s, %(hash)s, 'admin', true, %(must_change)s, %(sucursal_id)s)
                    """,
                    {
                        "nombre": nombre,
                        "correo": email,
                        "hash": hash_password(password),
                        # A generated password is shown once; force a change on first login.
                        "must_change": generated_password,
                        "sucursal_id": sucursal_id,
                    },
                )

    print("BOOTSTRAP_ADMIN_CREATED")
    print(f"email: {email}")
    if generated_password:
        print(f"password: {password}")
    else:
        print("password: (provided via BOOTSTRAP_ADMIN_PASSWORD)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
