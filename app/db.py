"""Postgres helpers: pooled connections, tx-scoped active connection, query logging."""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from app.config import LOG_ALL_QUERIES, SLOW_QUERY_MS, get_db_url, pool_bounds


_POOL: ThreadedConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_logger = logging.getLogger("objmgr.db")
_query_logger = logging.getLogger("objmgr.db.query")
# (thread ident, conn); threads that inherit a context copy must not reuse the conn
_ACTIVE_CONN: contextvars.ContextVar[tuple[int, Any] | None] = contextvars.ContextVar("objmgr_db_active_conn", default=None)
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("objmgr_db_stats", default=None)


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(*, query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    stats = get_db_stats()
    stats["queries"] = stats.get("queries", 0) + 1
    stats["total_ms"] = stats.get("total_ms", 0.0) + elapsed_ms
    _DB_STATS.set(stats)
    if not query_name and not LOG_ALL_QUERIES and elapsed_ms < SLOW_QUERY_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= SLOW_QUERY_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            default_min, default_max = pool_bounds()
            _POOL = ThreadedConnectionPool(minconn or default_min, maxconn or default_max, dsn=get_db_url())


def get_pool() -> ThreadedConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


def reset_db_stats() -> None:
    _DB_STATS.set({"queries": 0, "total_ms": 0.0})


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "total_ms": 0.0}
    return stats


def set_active_conn(conn) -> None:
    _ACTIVE_CONN.set((threading.get_ident(), conn))


def clear_active_conn() -> None:
    _ACTIVE_CONN.set(None)


def get_active_conn():
    active = _ACTIVE_CONN.get()
    if active is None or active[0] != threading.get_ident():
        return None
    return active[1]


@contextmanager
def get_conn():
    active = get_active_conn()
    if active is not None:
        yield active
        return
    pool = get_pool()
    conn = pool.getconn()
    _logger.debug("db_conn borrowed")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)
        _logger.debug("db_conn returned")


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        row = cur.fetchone()
        rowcount = cur.rowcount
    _log_query(query_name=query_name, params=params, elapsed_ms=(time.perf_counter() - start) * 1000, rowcount=rowcount)
    return dict(row) if row else None


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    start = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(sql, params or [])
        rows = [dict(r) for r in cur.fetchall()]
        rowcount = cur.rowcount
    _log_query(query_name=query_name, params=params, elapsed_ms=(time.perf_counter() - start) * 1000, rowcount=rowcount)
    return rows


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    start = time.perf_counter()
    with conn.cursor() as cur:
        cur.execute(sql, params or [])
        rowcount = cur.rowcount
    _log_query(query_name=query_name, params=params, elapsed_ms=(time.perf_counter() - start) * 1000, rowcount=rowcount)
    return rowcount
