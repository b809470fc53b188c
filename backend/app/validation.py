from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BeforeValidator, StringConstraints


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def _blank_to_none(v):
    if v is None:
        return None
    s = str(v).strip()
    return s or None


# Mirrors Postgres enum `tipo_metodo_pago` in `backend/db/schema.sql`.
# Membership is enforced by the database so an unknown method fails only its own sale.
PAYMENT_METHODS = ("efectivo", "debito", "credito", "transferencia", "cheque", "otro")

PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32),
]

# Trimmed text; empty strings collapse to None.
NullishText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]

BranchCode = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=32)]


def clamp_limit(raw, *, default: int, maximum: int) -> int:
    """Page size from a query string: junk falls back to `default`, numbers clamp to 1..maximum."""
    try:
        n = int(raw) if raw not in (None, "") else default
    except (TypeError, ValueError):
        return default
    return min(max(n, 1), maximum)
