"""Object manager kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps
from .fingerprint import schema_fingerprint

__all__ = [
    "CanonicalJsonTypeError",
    "canonical_dumps",
    "schema_fingerprint",
]
