"""Attribute name checks against reserved words and reference columns."""

from __future__ import annotations

import re
from typing import Any, FrozenSet

from attribute_errors import InvalidNameError, ReferenceSuffixError, ReservedWordError


RESERVED_WORDS: FrozenSet[str] = frozenset(
    {
        # ORM / storage keywords
        "attribute",
        "destroy",
        "true",
        "false",
        "integer",
        "select",
        "drop",
        "create",
        "alter",
        "index",
        "table",
        "varchar",
        "blob",
        "date",
        "datetime",
        "timestamp",
        # application words
        "url",
        "icon",
        "initials",
        "avatar",
        "permission",
        "validate",
        "subscribe",
        "unsubscribe",
        "translate",
        "search",
        # search index fields
        "_type",
        "_doc",
        "_id",
        "id",
    }
)

MAX_NAME_LENGTH = 63
_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_REFERENCE_RE = re.compile(r"_ids?$", re.IGNORECASE)


def is_reserved(name: str) -> bool:
    return name.lower() in RESERVED_WORDS


def validate_name(name: Any) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidNameError(message="Name is required")
    if is_reserved(name):
        raise ReservedWordError.for_word(name)
    if _REFERENCE_RE.search(name):
        raise ReferenceSuffixError(message="Name can't get used, *_id and *_ids are not allowed")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidNameError(message=f"Name must not exceed {MAX_NAME_LENGTH} characters")
    if not _NAME_RE.match(name):
        raise InvalidNameError(
            message="Name must start with a lowercase letter and contain only lowercase letters, digits and underscores"
        )
