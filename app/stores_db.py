"""DB-backed attribute catalog, schema backend and permission lookups."""

from __future__ import annotations

import contextvars
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Tuple

import psycopg2
import psycopg2.errors

from app.db import clear_active_conn, execute, fetch_all, fetch_one, get_conn, get_pool, init_pool, set_active_conn
from app.ddl import render_operation
from attribute_definition import AttributeDefinition
from attribute_errors import MigrationInProgressError, PermissionLookupError, StorageError, StorageTimeoutError
from migration_executor import DdlOperation
from visibility_merge import Viewer


logger = logging.getLogger("objmgr.db")

# Auto-migration allowlist (ALLOWED_AUTO_MIGRATION)
_ALLOWED_AUTO_MIGRATION_TABLES = {"object_manager_attributes"}
_AUTO_MIGRATION_LOGGED: set[str] = set()

# pg advisory lock key for schema migrations ("objmgr" as int8)
_MIGRATION_LOCK_KEY = 0x6F626A6D6772


def _json_dumps(value: object) -> str:
    return json.dumps(value, default=str)


def _ensure_json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value


@contextmanager
def _storage_errors(action: str, statement: str | None = None) -> Iterator[None]:
    try:
        yield
    except psycopg2.errors.QueryCanceled as exc:
        raise StorageTimeoutError(message=f"{action}: {str(exc).strip()}", statement=statement or action) from exc
    except psycopg2.Error as exc:
        raise StorageError(message=f"{action}: {str(exc).strip()}", statement=statement or action) from exc


@dataclass
class _TxState:
    conn: Any
    pool: Any
    owner: int
    depth: int = 1
    doomed: bool = False


_CURRENT_TX: contextvars.ContextVar[_TxState | None] = contextvars.ContextVar("objmgr_current_tx", default=None)


def _current_tx() -> _TxState | None:
    state = _CURRENT_TX.get()
    if state is None or state.owner != threading.get_ident():
        return None
    return state


class DbTx:
    """Handle on the transaction bound to the calling thread's context.

    ``begin()`` inside an open transaction of the same context returns another
    handle on the same connection; only the outermost handle ends it. A rollback
    through any handle dooms the transaction, and the outermost ``commit()`` then
    rolls back and raises ``StorageError``.
    """

    def __init__(self, state: _TxState) -> None:
        self._state = state

    @property
    def conn(self):
        return self._state.conn

    def commit(self) -> None:
        state = self._state
        if state.depth > 1:
            state.depth -= 1
            return
        if state.doomed:
            self._close(rollback=True)
            raise StorageError(message="transaction rolled back after a failed nested operation")
        try:
            with _storage_errors("commit"):
                state.conn.commit()
        except StorageError:
            self._close(rollback=True)
            raise
        self._close(rollback=False)

    def rollback(self) -> None:
        state = self._state
        state.doomed = True
        if state.depth > 1:
            state.depth -= 1
            return
        self._close(rollback=True)

    def _close(self, rollback: bool) -> None:
        state = self._state
        try:
            if rollback:
                try:
                    state.conn.rollback()
                except psycopg2.Error as exc:
                    logger.warning("db_tx_rollback_failed error=%s", str(exc).strip())
        finally:
            state.pool.putconn(state.conn)
            _CURRENT_TX.set(None)
            clear_active_conn()


class DbTxManager:
    def begin(self) -> DbTx:
        state = _current_tx()
        if state is not None:
            state.depth += 1
            return DbTx(state)
        init_pool()
        pool = get_pool()
        with _storage_errors("begin"):
            conn = pool.getconn()
        state = _TxState(conn=conn, pool=pool, owner=threading.get_ident())
        _CURRENT_TX.set(state)
        set_active_conn(conn)
        return DbTx(state)

def _definition_from_row(row: dict) -> AttributeDefinition:
    return AttributeDefinition.from_dict(
        {
            "object_type": row["object_type"],
            "name": row["name"],
            "display": row.get("display"),
            "data_type": row.get("data_type"),
            "data_option": _ensure_json(row.get("data_option")) or {},
            "screens": _ensure_json(row.get("screens")) or {},
            "position": row.get("position"),
            "editable": row.get("editable"),
            "active": row.get("active"),
            "migrated": row.get("migrated"),
            "to_delete": row.get("to_delete"),
            "applied": _ensure_json(row.get("applied")),
            "created_at": _to_iso(row.get("created_at")),
            "updated_at": _to_iso(row.get("updated_at")),
        }
    )


_COLUMNS = """
object_type, name, display, data_type, data_option, screens, position,
editable, active, migrated, to_delete, applied, created_at, updated_at
"""


class DbDefinitionRepo:
    def __init__(self, tx_mgr: DbTxManager | None = None) -> None:
        self._tx_mgr = tx_mgr or DbTxManager()

    def ensure_table(self) -> None:
        table = "object_manager_attributes"
        if table not in _ALLOWED_AUTO_MIGRATION_TABLES:
            raise RuntimeError("auto_migration_not_allowed: object_manager_attributes")
        with get_conn() as conn:
            execute(
                conn,
                """
                create table if not exists object_manager_attributes (
                  seq bigserial,
                  object_type text not null,
                  name text not null,
                  display text null,
                  data_type text not null,
                  data_option jsonb not null default '{}'::jsonb,
                  screens jsonb not null default '{}'::jsonb,
                  position integer null,
                  editable boolean not null default true,
                  active boolean not null default true,
                  migrated boolean not null default false,
                  to_delete boolean not null default false,
                  applied jsonb null,
                  created_at timestamptz not null default now(),
                  updated_at timestamptz not null default now(),
                  primary key (object_type, name)
                );
                """,
                query_name="object_manager_attributes.ensure",
            )
            execute(
                conn,
                """
                create index if not exists object_manager_attributes_pending_idx
                  on object_manager_attributes (migrated) where migrated = false;
                """,
                query_name="object_manager_attributes.ensure_pending_idx",
            )
        if table not in _AUTO_MIGRATION_LOGGED:
            logger.info("auto_migration_applied table=%s", table)
            _AUTO_MIGRATION_LOGGED.add(table)

    @contextmanager
    def lock(self, key: Tuple[str, str]) -> Iterator[None]:
        tx = self._tx_mgr.begin()
        try:
            with _storage_errors("object_manager_attributes.lock"):
                execute(
                    tx.conn,
                    "select pg_advisory_xact_lock(hashtext(%s))",
                    [f"{key[0]}.{key[1]}"],
                    query_name="object_manager_attributes.lock",
                )
            yield
        except Exception:
            tx.rollback()
            raise
        tx.commit()

    def get(self, key: Tuple[str, str]) -> AttributeDefinition | None:
        with _storage_errors("object_manager_attributes.get"), get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {_COLUMNS} from object_manager_attributes where object_type=%s and name=%s",
                [key[0], key[1]],
                query_name="object_manager_attributes.get",
            )
            return _definition_from_row(row) if row else None

    def save(self, definition: AttributeDefinition) -> None:
        data = definition.to_dict()
        with _storage_errors("object_manager_attributes.upsert"), get_conn() as conn:
            execute(
                conn,
                """
                insert into object_manager_attributes (
                  object_type, name, display, data_type, data_option, screens, position,
                  editable, active, migrated, to_delete, applied, created_at, updated_at
                )
                values (%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,coalesce(%s::timestamptz, now()),coalesce(%s::timestamptz, now()))
                on conflict (object_type, name) do update
                  set display = excluded.display,
                      data_type = excluded.data_type,
                      data_option = excluded.data_option,
                      screens = excluded.screens,
                      position = excluded.position,
                      editable = excluded.editable,
                      active = excluded.active,
                      migrated = excluded.migrated,
                      to_delete = excluded.to_delete,
                      applied = excluded.applied,
                      updated_at = excluded.updated_at
                """,
                [
                    data["object_type"],
                    data["name"],
                    data["display"],
                    data["data_type"],
                    _json_dumps(data["data_option"]),
                    _json_dumps(data["screens"]),
                    data["position"],
                    data["editable"],
                    data["active"],
                    data["migrated"],
                    data["to_delete"],
                    _json_dumps(data["applied"]) if data["applied"] is not None else None,
                    data["created_at"],
                    data["updated_at"],
                ],
                query_name="object_manager_attributes.upsert",
            )

    def delete(self, key: Tuple[str, str]) -> None:
        with _storage_errors("object_manager_attributes.delete"), get_conn() as conn:
            execute(
                conn,
                "delete from object_manager_attributes where object_type=%s and name=%s",
                [key[0], key[1]],
                query_name="object_manager_attributes.delete",
            )

    def list(self, object_type: str | None = None) -> list[AttributeDefinition]:
        with _storage_errors("object_manager_attributes.list"), get_conn() as conn:
            if object_type is None:
                rows = fetch_all(
                    conn,
                    f"select {_COLUMNS} from object_manager_attributes order by seq",
                    query_name="object_manager_attributes.list",
                )
            else:
                rows = fetch_all(
                    conn,
                    f"select {_COLUMNS} from object_manager_attributes where object_type=%s order by seq",
                    [object_type],
                    query_name="object_manager_attributes.list_by_object",
                )
            return [_definition_from_row(r) for r in rows]


class DbSchemaBackend:
    transactional_ddl = True

    def __init__(self, tx_mgr: DbTxManager | None = None) -> None:
        self._tx_mgr = tx_mgr or DbTxManager()

    @contextmanager
    def migration_lock(self) -> Iterator[None]:
        init_pool()
        pool = get_pool()
        with _storage_errors("migration.lock"):
            conn = pool.getconn()
        try:
            with _storage_errors("migration.lock"):
                conn.autocommit = True
                row = fetch_one(conn, "select pg_try_advisory_lock(%s) as locked", [_MIGRATION_LOCK_KEY], query_name="migration.lock")
            if not row or not row.get("locked"):
                raise MigrationInProgressError()
            try:
                yield
            finally:
                fetch_one(conn, "select pg_advisory_unlock(%s) as unlocked", [_MIGRATION_LOCK_KEY], query_name="migration.unlock")
        finally:
            conn.autocommit = False
            pool.putconn(conn)

    def begin(self, timeout_ms: int | None = None) -> DbTx:
        tx = self._tx_mgr.begin()
        if timeout_ms:
            try:
                with _storage_errors("migration.statement_timeout"):
                    execute(
                        tx.conn,
                        "select set_config('statement_timeout', %s, true)",
                        [str(int(timeout_ms))],
                        query_name="migration.statement_timeout",
                    )
            except StorageError:
                tx.rollback()
                raise
        return tx

    def execute_ddl(self, op: DdlOperation, timeout_ms: int | None = None) -> None:
        with get_conn() as conn:
            for sql, params in render_operation(op):
                with _storage_errors(op.describe(), statement=sql):
                    execute(conn, sql, params, query_name=f"ddl.{op.kind}")


class DbPermissionStore:
    def viewer_for(self, user_id: str) -> Viewer:
        try:
            with get_conn() as conn:
                rows = fetch_all(
                    conn,
                    """
                    select distinct rp.permission
                    from user_roles ur
                    join role_permissions rp on rp.role_id = ur.role_id
                    where ur.user_id=%s
                    order by rp.permission
                    """,
                    [user_id],
                    query_name="role_permissions.by_user",
                )
        except psycopg2.Error as exc:
            raise PermissionLookupError(message=f"permission lookup failed: {str(exc).strip()}") from exc
        return Viewer(tuple(r["permission"] for r in rows), user_id=user_id)
