"""Error kinds for data model mutations and their issue-dict form."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


Issue = Dict[str, Any]


def _issue(kind: str, code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "kind": kind, "message": message, "path": path, "detail": detail}


@dataclass
class SchemaError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    kind = "SchemaError"

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"

    def to_issue(self) -> Issue:
        return _issue(self.kind, self.code, self.message, self.path, self.detail)


@dataclass
class ValidationError(SchemaError):
    kind = "ValidationError"


@dataclass
class NotFoundError(SchemaError):
    kind = "NotFoundError"


@dataclass
class ReferentialIntegrityError(SchemaError):
    kind = "ReferentialIntegrityError"


@dataclass
class DuplicateError(SchemaError):
    kind = "DuplicateError"


@dataclass
class BusyError(SchemaError):
    kind = "BusyError"


@dataclass
class PersistenceError(SchemaError):
    kind = "PersistenceError"


def failure(exc: SchemaError, key: str | None = None, warnings: List[Issue] | None = None) -> dict:
    """Build the ``ok=False`` result envelope for ``exc``."""
    result = {"ok": False, "errors": [exc.to_issue()], "warnings": list(warnings or [])}
    if key:
        result[key] = None
    return result


def success(key: str | None = None, value: Any = None, warnings: List[Issue] | None = None) -> dict:
    result = {"ok": True, "errors": [], "warnings": list(warnings or [])}
    if key:
        result[key] = value
    return result
