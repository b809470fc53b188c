from __future__ import annotations

from dataclasses import dataclass

from .config import settings


@dataclass(frozen=True)
class SchemaCapabilities:
    """
    Which columns the deployed `equipos` table carries.

    The teams table is mid-migration from `sucursal_id` (uuid) to `sucursal_codigo`
    (text code). Each schema version pins the shape explicitly so handlers build
    their SQL from this descriptor instead of probing information_schema per request.
    """

    version: int
    has_sucursal_codigo: bool
    has_sucursal_id: bool
    sucursal_id_not_null: bool
    has_updated_at: bool = True

    @property
    def filters_by_codigo(self) -> bool:
        return self.has_sucursal_codigo


SCHEMA_VERSIONS: dict[int, SchemaCapabilities] = {
    # Legacy: teams keyed by branch uuid only.
    1: SchemaCapabilities(version=1, has_sucursal_codigo=False, has_sucursal_id=True, sucursal_id_not_null=True),
    # Migration window: both columns present, uuid still NOT NULL.
    2: SchemaCapabilities(version=2, has_sucursal_codigo=True, has_sucursal_id=True, sucursal_id_not_null=True),
    # Target: branch code only.
    3: SchemaCapabilities(version=3, has_sucursal_codigo=True, has_sucursal_id=False, sucursal_id_not_null=False),
}


def load_schema_caps(version: int) -> SchemaCapabilities:
    try:
        return SCHEMA_VERSIONS[int(version)]
    except (KeyError, TypeError, ValueError):
        known = ", ".join(str(v) for v in sorted(SCHEMA_VERSIONS))
        raise ValueError(f"unknown SCHEMA_VERSION {version!r} (known: {known})")


def current_schema_caps() -> SchemaCapabilities:
    # Dependency hook: resolved from SCHEMA_VERSION, overridable in tests.
    return load_schema_caps(settings.schema_version)
