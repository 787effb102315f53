"""
Canonical JSON encoding.

Registry records, events and certificate manifests are hashed over this
form, so two records with the same content always hash the same: keys are
sorted, there is no whitespace and output is UTF-8 without ASCII escaping.
Only JSON-native values are accepted; callers convert timestamps and enums
before hashing.
"""

import json
from typing import Any

_SCALARS = (str, int, float, bool, type(None))


def _normalize(value: Any) -> Any:
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        return {key: _normalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    raise ValueError(f"Cannot canonicalize type: {type(value)}")


def canonicalize(obj: Any) -> bytes:
    return json.dumps(_normalize(obj), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
