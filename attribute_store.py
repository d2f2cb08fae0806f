"""Attribute definition catalog: add/edit/remove with per-name serialization."""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

from attribute_definition import AttributeDefinition, _now, object_type_for
from attribute_errors import ValidationError
from name_validator import validate_name
from type_registry import is_compatible, parse_data_type
from visibility_merge import as_viewer, effective_screens


logger = logging.getLogger("objmgr.store")

Key = Tuple[str, str]

_PRESENTATION_FIELDS = ("display", "screens", "position", "active", "editable")


class MemoryDefinitionRepo:
    def __init__(self) -> None:
        self._items: Dict[Key, dict] = {}
        self._locks: Dict[Key, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def lock(self, key: Key) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield

    def get(self, key: Key) -> AttributeDefinition | None:
        data = self._items.get(key)
        return AttributeDefinition.from_dict(data) if data else None

    def save(self, definition: AttributeDefinition) -> None:
        self._items[definition.key] = definition.to_dict()

    def delete(self, key: Key) -> None:
        self._items.pop(key, None)

    def list(self, object_type: str | None = None) -> list[AttributeDefinition]:
        items = []
        for (otype, _), data in list(self._items.items()):
            if object_type is not None and otype != object_type:
                continue
            items.append(AttributeDefinition.from_dict(data))
        return items


def _sort_key(definition: AttributeDefinition) -> tuple:
    return (definition.position is None, definition.position or 0)


class AttributeStore:
    def __init__(self, repo: Any | None = None) -> None:
        self._repo = repo if repo is not None else MemoryDefinitionRepo()

    def get(self, object_type: str, name: str) -> AttributeDefinition | None:
        return self._repo.get((object_type, name))

    def list(self, object_type: str | None = None) -> list[AttributeDefinition]:
        return self._repo.list(object_type)

    def pending(self) -> list[AttributeDefinition]:
        return [d for d in self._repo.list() if not d.migrated]

    def add(self, object_type: str, params: dict) -> AttributeDefinition:
        params = dict(params or {})
        name = params.get("name")
        validate_name(name)
        obj = object_type_for(object_type)
        if name in obj.columns:
            raise ValidationError(message=f"{name} already exists on {obj.name}", code="NAME_TAKEN", path="name")
        data_type = parse_data_type(params.get("data_type"))
        if data_type is None:
            raise ValidationError(message=f"Unknown data_type: {params.get('data_type')}", code="DATA_TYPE_UNKNOWN", path="data_type")

        data_option = params.get("data_option_new")
        if data_option is None:
            data_option = params.get("data_option")

        key = (obj.name, name)
        with self._repo.lock(key):
            existing = self._repo.get(key)
            if existing is None:
                definition = AttributeDefinition(
                    object_type=obj.name,
                    name=name,
                    data_type=data_type.value,
                    data_option=copy.deepcopy(data_option or {}),
                    screens=copy.deepcopy(params.get("screens") or {}),
                    created_at=_now(),
                )
                for attr in _PRESENTATION_FIELDS:
                    if attr in params and attr != "screens":
                        setattr(definition, attr, copy.deepcopy(params[attr]))
            else:
                if not is_compatible(existing.data_type, data_type):
                    raise ValidationError(
                        message=f"Can't change data_type of {name} from {existing.data_type} to {data_type.value}",
                        code="DATA_TYPE_CONFLICT",
                        path="data_type",
                    )
                definition = copy.deepcopy(existing)
                definition.data_type = data_type.value
                if data_option is not None:
                    definition.data_option = copy.deepcopy(data_option)
                for attr in _PRESENTATION_FIELDS:
                    if attr in params:
                        setattr(definition, attr, copy.deepcopy(params[attr]))
                definition.to_delete = False

            issues = definition.validate()
            if issues:
                raise ValidationError.from_issues(issues)
            if existing is not None and not existing.editable:
                if definition.data_type != existing.data_type or definition.data_option != existing.data_option:
                    raise ValidationError(message=f"{name} is not editable", code="NOT_EDITABLE", path="name")

            definition.migrated = definition.matches_applied()
            if definition.migrated:
                definition.applied = definition.snapshot()
            definition.updated_at = _now()
            self._repo.save(definition)

        logger.info(
            "attribute_saved object=%s name=%s data_type=%s action=%s migrated=%s",
            obj.name,
            name,
            definition.data_type,
            "create" if existing is None else "update",
            definition.migrated,
        )
        return copy.deepcopy(definition)

    def remove(self, object_type: str, name: str) -> AttributeDefinition:
        obj = object_type_for(object_type)
        key = (obj.name, name)
        with self._repo.lock(key):
            existing = self._repo.get(key)
            if existing is None:
                raise ValidationError(message=f"No such attribute: {obj.name}.{name}", code="NOT_FOUND", path="name")
            if not existing.editable:
                raise ValidationError(message=f"{name} is not editable", code="NOT_EDITABLE", path="name")
            if not existing.applied:
                self._repo.delete(key)
                logger.info("attribute_deleted object=%s name=%s pending=false", obj.name, name)
                return existing
            existing.to_delete = True
            existing.migrated = False
            existing.updated_at = _now()
            self._repo.save(existing)
        logger.info("attribute_deleted object=%s name=%s pending=true", obj.name, name)
        return copy.deepcopy(existing)

    def discard_changes(self) -> int:
        discarded = 0
        for pending in self.pending():
            with self._repo.lock(pending.key):
                current = self._repo.get(pending.key)
                if current is None or current.migrated:
                    continue
                if not current.applied:
                    self._repo.delete(current.key)
                else:
                    restored = current.applied_definition()
                    restored.to_delete = False
                    restored.migrated = True
                    restored.updated_at = _now()
                    self._repo.save(restored)
                discarded += 1
        logger.info("attribute_changes_discarded count=%s", discarded)
        return discarded

    def mark_migrated(self, definition: AttributeDefinition) -> None:
        """Record ``definition`` as the shape now present in the backing schema."""
        with self._repo.lock(definition.key):
            current = self._repo.get(definition.key)
            if current is None:
                return
            current.applied = definition.snapshot()
            # an edit that landed while DDL ran stays pending
            current.migrated = current.matches_applied() and not current.to_delete
            self._repo.save(current)

    def purge(self, definition: AttributeDefinition) -> None:
        with self._repo.lock(definition.key):
            current = self._repo.get(definition.key)
            if current is None:
                return
            if current.to_delete:
                self._repo.delete(definition.key)
                return
            # re-added while its column was being dropped: create it again
            current.applied = None
            current.migrated = False
            self._repo.save(current)

    def by_object(self, object_type: str, viewer: Any = None) -> List[dict]:
        obj = object_type_for(object_type)
        viewer = as_viewer(viewer)
        items = []
        for definition in sorted(self._repo.list(obj.name), key=_sort_key):
            if not definition.active or definition.to_delete:
                continue
            shape = definition.read_shape()
            if shape is None:
                continue
            items.append(
                {
                    "name": shape.name,
                    "display": shape.display,
                    "data_type": shape.data_type,
                    "data_option": copy.deepcopy(shape.data_option),
                    "position": shape.position,
                    "editable": shape.editable,
                    "screen": effective_screens(shape, viewer),
                }
            )
        return items
