"""Builds the object manager from configuration."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import migration_timeout_ms, use_db
from attribute_store import AttributeStore
from object_manager import ObjectManager


def build_object_manager() -> ObjectManager:
    if use_db():
        from app.stores_db import DbDefinitionRepo, DbSchemaBackend

        repo = DbDefinitionRepo()
        repo.ensure_table()
        return ObjectManager(AttributeStore(repo), DbSchemaBackend(), default_timeout_ms=migration_timeout_ms())

    from app.stores import InMemorySchemaBackend

    return ObjectManager(AttributeStore(), InMemorySchemaBackend(), default_timeout_ms=migration_timeout_ms())


def build_permission_store():
    if use_db():
        from app.stores_db import DbPermissionStore

        return DbPermissionStore()

    from app.stores import MemoryPermissionStore

    return MemoryPermissionStore()
