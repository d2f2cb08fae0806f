"""Schema fingerprints used to detect pending migrations."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def schema_fingerprint(shape: Any) -> str:
    """Return the SHA-256 fingerprint of the storage-relevant part of a definition."""
    data = canonical_dumps(shape).encode("utf-8")
    digest = hashlib.sha256(data).hexdigest()
    return f"sha256:{digest}"
