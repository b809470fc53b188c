#!/usr/bin/env python3
import argparse
import os
import sys

import psycopg
from psycopg.rows import dict_row

from backend.app.security import hash_password


def main(argv=None, connect=psycopg.connect) -> int:
    parser = argparse.ArgumentParser(description="Reset a user's password and clear any login lockout.")
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL") or "postgresql://localhost/moncar",
        help="Postgres connection string (defaults to $DATABASE_URL).",
    )
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument(
        "--keep-password-change",
        action="store_true",
        help="Do not force a password change on next login.",
    )
    args = parser.parse_args(argv)

    email = (args.email or "").strip().lower()
    if not email:
        print("email is required", file=sys.stderr)
        return 2
    if len(args.password) < 8:
        print("password must be at least 8 characters", file=sys.stderr)
        return 2

    with connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE usuarios
                    SET password_hash = %(hash)s,
                        activo = true,
                        failed_login_attempts = 0,
                        locked_until = NULL,
                        must_change_password = %(must_change)s,
                        actualizado_en = now()
                    WHERE lower(correo) = %(correo)s
                    RETURNING id_usuario
                    """,
                    {
                        "hash": hash_password(args.password),
                        "must_change": not args.keep_password_change,
                        "correo": email,
                    },
                )
                if not cur.fetchone():
                    print(f"user not found: {email}", file=sys.stderr)
                    return 2

    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
