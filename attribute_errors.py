"""Error taxonomy for attribute definitions and schema migrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


Issue = Dict[str, Any]


def issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class ObjectManagerError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class ValidationError(ObjectManagerError):
    code: str = "VALIDATION_FAILED"
    path: str | None = None
    issues: List[Issue] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: List[Issue]) -> "ValidationError":
        first = issues[0]
        return cls(message=first["message"], code=first["code"], path=first.get("path"), issues=list(issues))


@dataclass
class AttributeNameError(ValidationError):
    code: str = "NAME_INVALID"
    path: str | None = "name"


@dataclass
class ReservedWordError(AttributeNameError):
    word: str = ""
    code: str = "NAME_RESERVED"

    @classmethod
    def for_word(cls, word: str) -> "ReservedWordError":
        return cls(message=f"{word} is a reserved word, please choose a different one", word=word)


@dataclass
class ReferenceSuffixError(AttributeNameError):
    code: str = "NAME_REFERENCE_SUFFIX"


@dataclass
class InvalidNameError(AttributeNameError):
    pass


@dataclass
class PermissionLookupError(ObjectManagerError):
    permission: str | None = None


@dataclass
class StorageError(ObjectManagerError):
    statement: str | None = None


@dataclass
class StorageTimeoutError(StorageError):
    pass


@dataclass
class MigrationError(ObjectManagerError):
    definition: Any = None
    cause: BaseException | None = None
    retryable: bool = True

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        target = getattr(self.definition, "key", None)
        if target:
            return f"{self.message} (attribute={target[0]}.{target[1]})"
        return self.message


@dataclass
class MigrationTimeoutError(MigrationError):
    retryable: bool = False


@dataclass
class MigrationInProgressError(MigrationError):
    message: str = "migration already in progress"
