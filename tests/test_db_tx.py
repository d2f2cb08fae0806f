import os
import sys
import threading
import unittest
from unittest import mock

import psycopg2

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app import stores_db
from app.db import get_active_conn
from app.stores_db import DbDefinitionRepo, DbTxManager
from attribute_definition import AttributeDefinition
from attribute_errors import StorageError, ValidationError


class _FakeCursor:
    def __init__(self, conn: "_FakeConn") -> None:
        self._conn = conn
        self.rowcount = 1

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, *exc) -> bool:
        return False

    def execute(self, sql, params=None) -> None:
        if self._conn.broken:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        self._conn.events.append("execute")
        self._conn.threads.add(threading.get_ident())

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class _FakeConn:
    def __init__(self) -> None:
        self.events = []
        self.threads = set()
        self.broken = False

    def cursor(self, **_kwargs) -> _FakeCursor:
        return _FakeCursor(self)

    def commit(self) -> None:
        self.events.append("commit")

    def rollback(self) -> None:
        self.events.append("rollback")


class _FakePool:
    def __init__(self) -> None:
        self.borrowed = []
        self.returned = []
        self._lock = threading.Lock()

    def getconn(self) -> _FakeConn:
        conn = _FakeConn()
        with self._lock:
            self.borrowed.append(conn)
        return conn

    def putconn(self, conn: _FakeConn) -> None:
        with self._lock:
            self.returned.append(conn)


class TestDbTxManager(unittest.TestCase):
    def setUp(self) -> None:
        self.pool = _FakePool()
        patches = [
            mock.patch.object(stores_db, "init_pool", lambda *a, **k: None),
            mock.patch.object(stores_db, "get_pool", lambda: self.pool),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)
        self.tx_mgr = DbTxManager()

    def test_threads_get_their_own_transaction(self) -> None:
        migration_tx = self.tx_mgr.begin()
        errors = []

        def _failing_add() -> None:
            repo = DbDefinitionRepo(DbTxManager())
            try:
                with repo.lock(("Ticket", "vip_level")):
                    raise ValidationError(message="maxlength must be a positive integer")
            except ValidationError as exc:
                errors.append(exc)

        worker = threading.Thread(target=_failing_add)
        worker.start()
        worker.join()
        migration_tx.commit()

        self.assertEqual(len(errors), 1)
        self.assertEqual(len(self.pool.borrowed), 2)
        migration_conn, worker_conn = self.pool.borrowed
        self.assertEqual(migration_conn.events, ["commit"])
        self.assertEqual(worker_conn.events, ["execute", "rollback"])
        self.assertNotIn(threading.get_ident(), worker_conn.threads)
        self.assertCountEqual(self.pool.returned, self.pool.borrowed)
        self.assertIsNone(get_active_conn())

    def test_active_conn_not_visible_to_other_threads(self) -> None:
        tx = self.tx_mgr.begin()
        seen = []
        worker = threading.Thread(target=lambda: seen.append(get_active_conn()))
        worker.start()
        worker.join()
        self.assertIs(get_active_conn(), tx.conn)
        tx.commit()
        self.assertEqual(seen, [None])

    def test_nested_begin_shares_connection(self) -> None:
        outer = self.tx_mgr.begin()
        inner = DbTxManager().begin()
        self.assertIs(inner.conn, outer.conn)
        inner.commit()
        self.assertEqual(outer.conn.events, [])
        outer.commit()
        self.assertEqual(len(self.pool.borrowed), 1)
        self.assertEqual(self.pool.borrowed[0].events, ["commit"])

    def test_nested_rollback_fails_outer_commit(self) -> None:
        outer = self.tx_mgr.begin()
        inner = self.tx_mgr.begin()
        inner.rollback()
        with self.assertRaises(StorageError):
            outer.commit()
        self.assertEqual(self.pool.borrowed[0].events, ["rollback"])
        self.assertEqual(self.pool.returned, self.pool.borrowed)
        self.assertIsNone(get_active_conn())

    def test_driver_errors_become_storage_errors(self) -> None:
        repo = DbDefinitionRepo(self.tx_mgr)
        tx = self.tx_mgr.begin()
        tx.conn.broken = True
        with self.assertRaises(StorageError) as ctx:
            repo.save(AttributeDefinition(object_type="Ticket", name="vip_level"))
        self.assertIsInstance(ctx.exception.__cause__, psycopg2.OperationalError)
        tx.rollback()
        self.assertEqual(self.pool.borrowed[0].events, ["rollback"])


if __name__ == "__main__":
    unittest.main()
