import os
from typing import List, Optional


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_optional(name: str) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or None


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/moncar')
        # Comma-separated list of allowed CORS origins for browser/mobile clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        self.db_pool_min = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = _env_int("DB_POOL_MAX_SIZE", 10)
        # 0 disables the server-side timeout.
        self.db_statement_timeout_ms = _env_int("DB_STATEMENT_TIMEOUT_MS", 15000)

        self.jwt_secret = _env_optional("JWT_SECRET")
        self.jwt_expires_minutes = _env_int("JWT_EXPIRES_MINUTES", 7 * 24 * 60)
        self.auth_max_failed_attempts = _env_int("AUTH_MAX_FAILED_ATTEMPTS", 8)
        self.auth_lock_minutes = _env_int("AUTH_LOCK_MINUTES", 15)

        # Logical id of the POS installation feeding the import endpoints (e.g. POS-MB-SUC-01).
        # Required: imports fail fast without it.
        self.source_id = _env_optional("SOURCE_ID")
        # Single-store deployment mode: every imported sale is written under this branch and
        # cancellations only flip sales of this branch. Unset = use the branch sent by the POS.
        self.forced_branch_id = _env_optional("FORCED_BRANCH_ID")
        self.schema_version = _env_int("SCHEMA_VERSION", 3)


settings = Settings()
