"""Deterministic JSON serialization for schema exports."""

from __future__ import annotations

import json
import math
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value has no canonical JSON form."""


def _check(value: Any, path: str = "$") -> Any:
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(f"Non-string key at {path}: {type(key).__name__}")
            out[key] = _check(item, f"{path}.{key}")
        return out
    # Frozen catalog entries carry tuples; they serialize as lists.
    if isinstance(value, (list, tuple)):
        return [_check(item, f"{path}[{idx}]") for idx, item in enumerate(value)]
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite float at {path}: {value!r}")
        return value
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(value).__name__}")


def canonical_dumps(obj: Any) -> str:
    """Serialize ``obj`` with sorted keys, compact separators and UTF-8 text.

    Tuples are written as lists. Sets, datetimes and other non-JSON values
    raise :class:`CanonicalJsonTypeError`; NaN and infinities raise
    ``ValueError``.
    """
    return json.dumps(
        _check(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
