"""Deterministic JSON for attribute storage shapes.

``canonical_dumps`` is what fingerprints are computed over, so two shapes that
would be stored identically must serialize to the same text: mapping keys are
turned into the strings a JSON column would hold (``True`` -> ``"true"``,
``3`` -> ``"3"``), tuples become lists, and keys are sorted at every level.
"""

from __future__ import annotations

import json
import math
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a shape holds a value JSON cannot carry."""


_SCALARS = (str, int, bool, type(None))


def _json_key(key: Any, path: str) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    if isinstance(key, (str, int)):
        return str(key)
    raise CanonicalJsonTypeError(f"Unsupported key type at {path}: {type(key).__name__}")


def _plain(value: Any, path: str) -> Any:
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            json_key = _json_key(key, path)
            out[json_key] = _plain(item, f"{path}.{json_key}")
        return out
    if isinstance(value, (list, tuple)):
        return [_plain(item, f"{path}[{idx}]") for idx, item in enumerate(value)]
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite float at {path}: {value!r}")
        return value
    if isinstance(value, _SCALARS):
        return value
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(value).__name__}")


def canonical_dumps(obj: Any) -> str:
    return json.dumps(_plain(obj, "$"), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
