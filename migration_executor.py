"""Apply pending attribute definitions to the backing schema."""

from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Tuple

from attribute_definition import AttributeDefinition
from attribute_errors import MigrationError, MigrationTimeoutError, StorageError, StorageTimeoutError
from type_registry import ColumnSpec, enumeration_values, is_enumeration


logger = logging.getLogger("objmgr.migration")

MAX_IDENTIFIER = 63


@dataclass(frozen=True)
class DdlOperation:
    kind: str
    table: str
    column: str | None = None
    spec: ColumnSpec | None = None
    previous: ColumnSpec | None = None
    values: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def describe(self) -> str:
        target = f"{self.table}.{self.column}" if self.column else self.table
        return f"{self.kind} {target}"


def lookup_table_name(table: str, column: str) -> str:
    name = f"{table}_{column}_options"
    if len(name) <= MAX_IDENTIFIER:
        return name
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
    return f"{name[:MAX_IDENTIFIER - 9]}_{digest}"


def plan_operations(definition: AttributeDefinition) -> List[DdlOperation]:
    table = definition.table
    name = definition.name
    lookup = lookup_table_name(table, name)
    applied = definition.applied_definition()

    if definition.to_delete:
        ops = [DdlOperation("drop_column", table, name)]
        if applied is not None and is_enumeration(applied.data_type):
            ops.append(DdlOperation("drop_lookup_table", lookup))
        return ops

    spec = definition.column()
    ops: List[DdlOperation] = []
    if applied is None:
        ops.append(DdlOperation("add_column", table, name, spec))
    else:
        previous = applied.column()
        if previous != spec:
            ops.append(DdlOperation("alter_column", table, name, spec, previous))
    if is_enumeration(definition.data_type):
        values = tuple(enumeration_values(definition.data_type, definition.data_option))
        ops.append(DdlOperation("ensure_lookup_table", lookup))
        ops.append(DdlOperation("sync_lookup_values", lookup, values=values))
    elif applied is not None and is_enumeration(applied.data_type):
        ops.append(DdlOperation("drop_lookup_table", lookup))
    return ops


class MigrationExecutor:
    def __init__(self, store: Any, backend: Any) -> None:
        self._store = store
        self._backend = backend

    def migration_execute(self, timeout_ms: int | None = None) -> bool:
        """Apply every pending definition; ``True`` on success, raises ``MigrationError`` otherwise.

        Safe to call repeatedly: definitions already applied are not pending and
        every DDL operation is idempotent, so a retry after a partial failure
        only touches what is left.
        """
        with self._as_migration_error("migration"):
            with self._backend.migration_lock():
                pending = self._store.pending()
                if not pending:
                    logger.info("migration_noop")
                    return True
                logger.info(
                    "migration_start count=%s transactional=%s timeout_ms=%s",
                    len(pending),
                    bool(self._backend.transactional_ddl),
                    timeout_ms,
                )
                if self._backend.transactional_ddl:
                    self._run_transactional(pending, timeout_ms)
                else:
                    self._run_sequential(pending, timeout_ms)
        logger.info("migration_done count=%s", len(pending))
        return True

    @contextmanager
    def _as_migration_error(self, stage: str, definition: AttributeDefinition | None = None) -> Iterator[None]:
        object_type, name = definition.key if definition is not None else (None, None)
        try:
            yield
        except MigrationError:
            raise
        except StorageTimeoutError as exc:
            logger.error("migration_timeout stage=%s object=%s name=%s error=%s", stage, object_type, name, exc)
            raise MigrationTimeoutError(message=f"{stage} timed out: {exc}", definition=definition, cause=exc) from exc
        except Exception as exc:
            logger.error("migration_failed stage=%s object=%s name=%s error=%s", stage, object_type, name, exc)
            raise MigrationError(message=f"{stage} failed: {exc}", definition=definition, cause=exc) from exc

    def _run_transactional(self, pending: List[AttributeDefinition], timeout_ms: int | None) -> None:
        with self._as_migration_error("begin"):
            tx = self._backend.begin(timeout_ms=timeout_ms)
        try:
            for definition in pending:
                self._apply(definition, timeout_ms)
            for definition in pending:
                with self._as_migration_error("catalog update", definition):
                    self._finish(definition)
        except Exception:
            tx.rollback()
            raise
        with self._as_migration_error("commit"):
            tx.commit()

    def _run_sequential(self, pending: List[AttributeDefinition], timeout_ms: int | None) -> None:
        for definition in pending:
            with self._as_migration_error("begin", definition):
                tx = self._backend.begin(timeout_ms=timeout_ms)
            try:
                self._apply(definition, timeout_ms)
                with self._as_migration_error("catalog update", definition):
                    self._finish(definition)
            except Exception:
                tx.rollback()
                raise
            with self._as_migration_error("commit", definition):
                tx.commit()

    def _apply(self, definition: AttributeDefinition, timeout_ms: int | None) -> None:
        object_type, name = definition.key
        for op in plan_operations(definition):
            try:
                self._backend.execute_ddl(op, timeout_ms=timeout_ms)
            except StorageTimeoutError as exc:
                logger.error(
                    "migration_timeout object=%s name=%s op=%s timeout_ms=%s",
                    object_type,
                    name,
                    op.describe(),
                    timeout_ms,
                )
                raise MigrationTimeoutError(
                    message=f"DDL timed out: {op.describe()}",
                    definition=definition,
                    cause=exc,
                ) from exc
            except StorageError as exc:
                logger.error(
                    "migration_failed object=%s name=%s op=%s statement=%s error=%s",
                    object_type,
                    name,
                    op.describe(),
                    exc.statement,
                    exc,
                )
                raise MigrationError(
                    message=f"DDL failed: {op.describe()}: {exc}",
                    definition=definition,
                    cause=exc,
                ) from exc
            logger.info("migration_op object=%s name=%s op=%s", object_type, name, op.describe())

    def _finish(self, definition: AttributeDefinition) -> None:
        if definition.to_delete:
            self._store.purge(definition)
        else:
            self._store.mark_migrated(definition)
