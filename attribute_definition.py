"""Attribute definition record and the catalog of core object types."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Tuple

from attribute_errors import Issue, ValidationError, issue
from objmgr.fingerprint import schema_fingerprint
from type_registry import apply_defaults, column_for, enumeration_values, is_enumeration, parse_data_type, validate_options
from visibility_merge import normalize_screens


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class ObjectType:
    name: str
    table: str
    columns: FrozenSet[str]


_BASE_COLUMNS = frozenset({"id", "created_at", "updated_at", "created_by_id", "updated_by_id"})

OBJECT_TYPES: Dict[str, ObjectType] = {
    "Ticket": ObjectType(
        "Ticket",
        "tickets",
        _BASE_COLUMNS
        | {"number", "title", "group_id", "owner_id", "customer_id", "organization_id", "state_id", "priority_id", "note", "close_at", "pending_time"},
    ),
    "User": ObjectType(
        "User",
        "users",
        _BASE_COLUMNS
        | {"login", "firstname", "lastname", "email", "password", "phone", "mobile", "organization_id", "active", "verified", "image", "note"},
    ),
    "Organization": ObjectType(
        "Organization",
        "organizations",
        _BASE_COLUMNS | {"name", "shared", "domain", "domain_assignment", "active", "note"},
    ),
    "Group": ObjectType(
        "Group",
        "groups",
        _BASE_COLUMNS | {"name", "assignment_timeout", "follow_up_possible", "email_address_id", "signature_id", "active", "note"},
    ),
}


def object_type_for(object_type: Any) -> ObjectType:
    found = OBJECT_TYPES.get(object_type) if isinstance(object_type, str) else None
    if found is None:
        raise ValidationError(
            message=f"Unknown object type: {object_type}",
            code="UNKNOWN_OBJECT",
            path="object_type",
        )
    return found


@dataclass
class AttributeDefinition:
    object_type: str = ""
    name: str = ""
    data_type: str = "text"
    data_option: Dict[str, Any] = field(default_factory=dict)
    screens: Dict[str, Dict[str, dict]] = field(default_factory=dict)
    display: str | None = None
    position: int | None = None
    editable: bool = True
    active: bool = True
    migrated: bool = False
    to_delete: bool = False
    applied: Dict[str, Any] | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.object_type, self.name)

    @property
    def table(self) -> str:
        return object_type_for(self.object_type).table

    def normalize(self) -> None:
        dtype = parse_data_type(self.data_type)
        if dtype is not None:
            self.data_type = dtype.value
        if self.data_option is None:
            self.data_option = {}
        if isinstance(self.data_option, dict):
            self.data_option = {str(k): v for k, v in self.data_option.items()}
            apply_defaults(self.data_type, self.data_option)
        if self.display is None:
            self.display = self.name

    def validate(self) -> List[Issue]:
        """Fill option defaults, then report every problem found.

        Defaults are applied before the checks on each call, so the record keeps
        sane values across repeated edits even when validation fails.
        """
        self.normalize()
        issues = validate_options(self.data_type, self.data_option)
        screens, screen_issues = normalize_screens(self.screens)
        if not screen_issues:
            self.screens = screens
        issues.extend(screen_issues)
        if self.position is not None and (not isinstance(self.position, int) or isinstance(self.position, bool)):
            issues.append(issue("POSITION_INVALID", "position must be an integer", "position"))
        for flag in ("active", "editable"):
            if not isinstance(getattr(self, flag), bool):
                issues.append(issue("FLAG_INVALID", f"{flag} must be a boolean", flag))
        if not isinstance(self.display, str):
            issues.append(issue("DISPLAY_INVALID", "display must be a string", "display"))
        return issues

    def column(self):
        return column_for(self.data_type, self.data_option)

    def schema_shape(self) -> dict:
        shape: Dict[str, Any] = {"column": self.column().to_dict()}
        if is_enumeration(self.data_type):
            shape["enumeration"] = [list(pair) for pair in enumeration_values(self.data_type, self.data_option)]
        return shape

    def fingerprint(self) -> str:
        return schema_fingerprint(self.schema_shape())

    def snapshot(self) -> dict:
        return {
            "data_type": self.data_type,
            "data_option": copy.deepcopy(self.data_option),
            "fingerprint": self.fingerprint(),
        }

    def matches_applied(self) -> bool:
        return bool(self.applied) and self.applied.get("fingerprint") == self.fingerprint()

    def applied_definition(self) -> "AttributeDefinition | None":
        """Return the definition as last migrated, or ``None`` if never migrated."""
        if not self.applied:
            return None
        live = copy.deepcopy(self)
        live.data_type = self.applied.get("data_type", self.data_type)
        live.data_option = copy.deepcopy(self.applied.get("data_option") or {})
        return live

    def read_shape(self) -> "AttributeDefinition | None":
        if self.migrated:
            return copy.deepcopy(self)
        return self.applied_definition()

    def to_dict(self) -> dict:
        return {
            "object_type": self.object_type,
            "name": self.name,
            "display": self.display,
            "data_type": self.data_type,
            "data_option": copy.deepcopy(self.data_option),
            "screens": copy.deepcopy(self.screens),
            "position": self.position,
            "editable": self.editable,
            "active": self.active,
            "migrated": self.migrated,
            "to_delete": self.to_delete,
            "applied": copy.deepcopy(self.applied),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AttributeDefinition":
        return cls(
            object_type=data["object_type"],
            name=data["name"],
            data_type=data.get("data_type") or "text",
            data_option=copy.deepcopy(data.get("data_option") or {}),
            screens=copy.deepcopy(data.get("screens") or {}),
            display=data.get("display"),
            position=data.get("position"),
            editable=bool(data.get("editable", True)),
            active=bool(data.get("active", True)),
            migrated=bool(data.get("migrated", False)),
            to_delete=bool(data.get("to_delete", False)),
            applied=copy.deepcopy(data.get("applied")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
