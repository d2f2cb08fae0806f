"""Entry points used by the application layer."""

from __future__ import annotations

from typing import Any, List

from attribute_definition import AttributeDefinition, object_type_for
from attribute_errors import ValidationError
from attribute_store import AttributeStore
from migration_executor import MigrationExecutor
from visibility_merge import VisibilityRule, effective_visibility


class ObjectManager:
    def __init__(self, store: AttributeStore, backend: Any, default_timeout_ms: int | None = None) -> None:
        self.store = store
        self.backend = backend
        self._executor = MigrationExecutor(store, backend)
        self._default_timeout_ms = default_timeout_ms

    def add(self, object_type: str, params: dict) -> AttributeDefinition:
        return self.store.add(object_type, params)

    def remove(self, object_type: str, name: str) -> AttributeDefinition:
        return self.store.remove(object_type, name)

    def get(self, object_type: str, name: str) -> AttributeDefinition | None:
        return self.store.get(object_type, name)

    def list(self, object_type: str | None = None) -> List[AttributeDefinition]:
        if object_type is not None:
            object_type_for(object_type)
        return self.store.list(object_type)

    def pending(self) -> List[AttributeDefinition]:
        return self.store.pending()

    def discard_changes(self) -> int:
        return self.store.discard_changes()

    def by_object(self, object_type: str, viewer: Any = None) -> List[dict]:
        return self.store.by_object(object_type, viewer)

    def effective_visibility(self, object_type: str, name: str, screen: str, viewer: Any = None) -> VisibilityRule:
        definition = self.store.get(object_type, name)
        if definition is None:
            raise ValidationError(message=f"No such attribute: {object_type}.{name}", code="NOT_FOUND", path="name")
        return effective_visibility(definition, screen, viewer)

    def migration_execute(self, timeout_ms: int | None = None) -> bool:
        if timeout_ms is None:
            timeout_ms = self._default_timeout_ms
        return self._executor.migration_execute(timeout_ms=timeout_ms)
