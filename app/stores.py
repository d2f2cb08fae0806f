"""In-memory schema backend and permission store for tests and local runs."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from attribute_definition import OBJECT_TYPES
from attribute_errors import MigrationInProgressError, PermissionLookupError, StorageError, StorageTimeoutError
from migration_executor import DdlOperation
from visibility_merge import Viewer


class InMemorySchemaTx:
    def __init__(self, backend: "InMemorySchemaBackend") -> None:
        self._backend = backend
        self._snapshot = backend._dump() if backend.transactional_ddl else None
        self.committed = False
        self.rolled_back = False

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True
        if self._snapshot is not None:
            self._backend._restore(self._snapshot)


class InMemorySchemaBackend:
    """Tables as ``{table: {column: column_type}}``, lookup tables as ``{table: {value: label}}``.

    ``fail_on`` and ``timeout_on`` take ``table.column`` (or bare table) targets
    whose DDL should raise, to exercise failure paths.
    """

    def __init__(
        self,
        transactional_ddl: bool = True,
        fail_on: Iterable[str] | None = None,
        timeout_on: Iterable[str] | None = None,
    ) -> None:
        self.transactional_ddl = transactional_ddl
        self.tables: Dict[str, Dict[str, dict]] = {obj.table: {} for obj in OBJECT_TYPES.values()}
        self.lookups: Dict[str, Dict[str, str]] = {}
        self.statements: List[DdlOperation] = []
        self.fail_on = set(fail_on or ())
        self.timeout_on = set(timeout_on or ())
        self.timeouts: List[int | None] = []
        self.transactions: List[InMemorySchemaTx] = []
        self._lock = threading.Lock()

    def _dump(self) -> dict:
        return {"tables": copy.deepcopy(self.tables), "lookups": copy.deepcopy(self.lookups)}

    def _restore(self, snapshot: dict) -> None:
        self.tables = snapshot["tables"]
        self.lookups = snapshot["lookups"]

    @contextmanager
    def migration_lock(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise MigrationInProgressError()
        try:
            yield
        finally:
            self._lock.release()

    def begin(self, timeout_ms: int | None = None) -> InMemorySchemaTx:
        self.timeouts.append(timeout_ms)
        tx = InMemorySchemaTx(self)
        self.transactions.append(tx)
        return tx

    def columns(self, table: str) -> Dict[str, dict]:
        return copy.deepcopy(self.tables.get(table, {}))

    def execute_ddl(self, op: DdlOperation, timeout_ms: int | None = None) -> None:
        target = f"{op.table}.{op.column}" if op.column else op.table
        if target in self.timeout_on:
            raise StorageTimeoutError(message="canceling statement due to statement timeout", statement=op.describe())
        if target in self.fail_on:
            raise StorageError(message=f"simulated failure for {target}", statement=op.describe())
        self.statements.append(op)

        if op.kind == "add_column":
            self.tables.setdefault(op.table, {}).setdefault(op.column, op.spec.to_dict())
        elif op.kind == "alter_column":
            columns = self.tables.setdefault(op.table, {})
            if op.column not in columns:
                raise StorageError(message=f'column "{op.column}" does not exist', statement=op.describe())
            columns[op.column] = op.spec.to_dict()
        elif op.kind == "drop_column":
            self.tables.get(op.table, {}).pop(op.column, None)
        elif op.kind == "ensure_lookup_table":
            self.lookups.setdefault(op.table, {})
        elif op.kind == "sync_lookup_values":
            self.lookups[op.table] = {value: label for value, label in op.values}
        elif op.kind == "drop_lookup_table":
            self.lookups.pop(op.table, None)
        else:
            raise StorageError(message=f"unsupported operation {op.kind}", statement=op.describe())


class MemoryPermissionStore:
    def __init__(self) -> None:
        self._roles: Dict[str, List[str]] = {}
        self._user_roles: Dict[str, List[str]] = {}

    def grant(self, role: str, permission: str) -> None:
        grants = self._roles.setdefault(role, [])
        if permission not in grants:
            grants.append(permission)

    def assign(self, user_id: str, role: str) -> None:
        roles = self._user_roles.setdefault(user_id, [])
        if role not in roles:
            roles.append(role)

    def viewer_for(self, user_id: str) -> Viewer:
        if user_id not in self._user_roles:
            raise PermissionLookupError(message=f"unknown user: {user_id}")
        permissions = set()
        for role in self._user_roles[user_id]:
            permissions.update(self._roles.get(role, []))
        return Viewer(tuple(sorted(permissions)), user_id=user_id)
