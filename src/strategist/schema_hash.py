"""Content hash for exported data models."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps

HASH_KEY = "schema_hash"


def schema_hash(export: dict[str, Any]) -> str:
    """Return ``sha256:<hex>`` over an export, ignoring its own hash key."""
    body = {k: v for k, v in export.items() if k != HASH_KEY}
    digest = hashlib.sha256(canonical_dumps(body).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"
