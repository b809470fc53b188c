from __future__ import annotations

from typing import Any


class BatchImportError(Exception):
    """Base for batch import failures."""


class ImportValidationError(BatchImportError):
    """A record in the batch has a malformed shape; the whole batch is rejected."""

    def __init__(self, index: int, errors: list[dict[str, Any]]):
        self.index = index
        self.errors = errors
        super().__init__(f"record {index} is invalid")

    def details(self) -> list[dict[str, Any]]:
        return [
            {"index": self.index, "loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")}
            for e in self.errors
        ]


class ConfigurationError(BatchImportError):
    """Required server-side configuration is missing. `code` is returned to the caller."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class ItemPersistenceError(BatchImportError):
    """One entity's atomic write failed. Recovered by the batch loop."""

    def __init__(self, natural_id: int, reason: str):
        self.natural_id = natural_id
        self.reason = reason
        super().__init__(f"{natural_id}: {reason}")


class AuditWriteError(BatchImportError):
    """The batch audit row could not be written. Logged, never surfaced."""
