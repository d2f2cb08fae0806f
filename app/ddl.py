"""Render planned DDL operations as Postgres statements."""

from __future__ import annotations

from typing import Any, List, Tuple

from migration_executor import DdlOperation
from type_registry import ColumnSpec


Statement = Tuple[str, List[Any]]


def _is_safe_identifier(value: Any) -> bool:
    if not value or not isinstance(value, str) or len(value) > 63:
        return False
    if not (value[0].isalpha() or value[0] == "_"):
        return False
    for ch in value:
        if not (ch.isalnum() or ch == "_"):
            return False
    return value.isascii()


def quote_ident(value: str) -> str:
    if not _is_safe_identifier(value):
        raise ValueError(f"unsafe identifier: {value!r}")
    return f'"{value}"'


def column_type_sql(spec: ColumnSpec) -> str:
    if spec.sql_type == "varchar" and spec.limit:
        return f"varchar({int(spec.limit)})"
    return spec.sql_type


def _using_clause(column: str, spec: ColumnSpec, previous: ColumnSpec | None) -> str:
    target = column_type_sql(spec)
    if previous is not None and previous.sql_type != "jsonb" and spec.sql_type == "jsonb":
        return f"case when {column} is null then null else jsonb_build_array({column}) end"
    if previous is not None and previous.sql_type == "jsonb" and spec.sql_type != "jsonb":
        return f"({column}->>0)::{target}"
    return f"{column}::{target}"


def render_operation(op: DdlOperation) -> List[Statement]:
    table = quote_ident(op.table)
    if op.kind == "add_column":
        column = quote_ident(op.column)
        null_sql = "null" if op.spec.nullable else "not null"
        return [(f"alter table {table} add column if not exists {column} {column_type_sql(op.spec)} {null_sql}", [])]
    if op.kind == "alter_column":
        column = quote_ident(op.column)
        null_sql = "drop not null" if op.spec.nullable else "set not null"
        sql = (
            f"alter table {table}"
            f" alter column {column} type {column_type_sql(op.spec)} using {_using_clause(column, op.spec, op.previous)},"
            f" alter column {column} {null_sql}"
        )
        return [(sql, [])]
    if op.kind == "drop_column":
        return [(f"alter table {table} drop column if exists {quote_ident(op.column)}", [])]
    if op.kind == "ensure_lookup_table":
        sql = (
            f"create table if not exists {table} ("
            " value text primary key,"
            " label text not null,"
            " position integer not null default 0"
            ")"
        )
        return [(sql, [])]
    if op.kind == "sync_lookup_values":
        values = [value for value, _ in op.values]
        statements: List[Statement] = [(f"delete from {table} where not (value = any(%s))", [values])]
        for position, (value, label) in enumerate(op.values):
            statements.append(
                (
                    f"insert into {table} (value, label, position) values (%s,%s,%s)"
                    " on conflict (value) do update set label = excluded.label, position = excluded.position",
                    [value, label, position],
                )
            )
        return statements
    if op.kind == "drop_lookup_table":
        return [(f"drop table if exists {table}", [])]
    raise ValueError(f"Unsupported DDL operation: {op.kind}")
