from __future__ import annotations

from datetime import time, timedelta

import mysql.connector
import pytest

from src.lesson_scheduler.lesson_scheduler.core.exceptions import PersistenceError
from src.lesson_scheduler.lesson_scheduler.database.bootstrap import iter_sql_statements
from src.lesson_scheduler.lesson_scheduler.database.connection import DatabaseConnection, DBConfig
from src.lesson_scheduler.lesson_scheduler.database.mysql_base import (
    advisory_lock,
    db_cursor,
    normalize_mysql_time,
)


class FakeCursor:
    def __init__(self, rows=None):
        self.executed = []
        self.rows = list(rows or [])
        self.closed = False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self, dictionary=False):
        return self._cursor

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class FakeFactory:
    def __init__(self, conn=None, error=None):
        self.conn = conn
        self.error = error

    def connect(self):
        if self.error:
            raise self.error
        return self.conn


def test_db_cursor_commits_on_success():
    conn = FakeConnection(FakeCursor())
    with db_cursor(FakeFactory(conn)) as (_, cur):
        cur.execute("UPDATE lesson_slots SET notes = %s", ("x",))
    assert conn.committed and not conn.rolled_back and conn.closed


def test_db_cursor_wraps_driver_errors_and_rolls_back():
    conn = FakeConnection(FakeCursor())
    with pytest.raises(PersistenceError) as exc:
        with db_cursor(FakeFactory(conn)):
            raise mysql.connector.Error("deadlock")
    assert isinstance(exc.value.__cause__, mysql.connector.Error)
    assert conn.rolled_back and not conn.committed and conn.closed


def test_db_cursor_rolls_back_other_errors_unchanged():
    conn = FakeConnection(FakeCursor())
    with pytest.raises(KeyError):
        with db_cursor(FakeFactory(conn)):
            raise KeyError("x")
    assert conn.rolled_back and not conn.committed


def test_db_cursor_connect_failure():
    with pytest.raises(PersistenceError):
        with db_cursor(FakeFactory(error=mysql.connector.Error("down"))):
            pass


def test_advisory_lock_acquires_and_releases():
    cur = FakeCursor(rows=[(1,), (1,)])
    conn = FakeConnection(cur)
    with advisory_lock(FakeFactory(conn), "tdl:Tr1:2024-06-03", timeout_seconds=3):
        pass
    assert cur.executed == [
        ("SELECT GET_LOCK(%s, %s)", ("tdl:Tr1:2024-06-03", 3)),
        ("SELECT RELEASE_LOCK(%s)", ("tdl:Tr1:2024-06-03",)),
    ]
    assert conn.closed


def test_advisory_lock_timeout():
    cur = FakeCursor(rows=[(0,)])
    entered = []
    with pytest.raises(PersistenceError):
        with advisory_lock(FakeFactory(FakeConnection(cur)), "busy", timeout_seconds=1):
            entered.append(True)
    assert entered == []
    assert len(cur.executed) == 1


@pytest.mark.parametrize(
    "raw,expected",
    [
        (time(8, 30), time(8, 30)),
        (timedelta(hours=16, minutes=5), time(16, 5)),
        ("09:15:00", time(9, 15)),
        ("09:15", time(9, 15)),
        (None, None),
    ],
)
def test_normalize_mysql_time(raw, expected):
    assert normalize_mysql_time(raw) == expected


def test_iter_sql_statements_respects_quotes_and_comments():
    sql = """
    -- students
    INSERT INTO students (id, name) VALUES ('s1', 'O''Brien; Jr');
    INSERT INTO teachers (id, name) VALUES ("t1", "A -- B");
    SELECT 1
    """
    assert list(iter_sql_statements(sql)) == [
        "INSERT INTO students (id, name) VALUES ('s1', 'O''Brien; Jr')",
        'INSERT INTO teachers (id, name) VALUES ("t1", "A -- B")',
        "SELECT 1",
    ]


def test_db_config_from_settings():
    config = DBConfig.from_settings(
        {"host": "db", "port": "3307", "user": "app", "password": "secret", "database": "lessons"}
    )
    assert config == DBConfig(host="db", port=3307, user="app", password="secret", database="lessons")
    assert DBConfig.from_settings({"host": "db", "user": "u", "password": "", "database": "d"}).port == 3306


def test_connect_opens_a_transactional_session(monkeypatch):
    calls = []
    monkeypatch.setattr(mysql.connector, "connect", lambda **kwargs: calls.append(kwargs) or "conn")
    factory = DatabaseConnection(DBConfig(host="db", port=3306, user="u", password="p", database="d"))

    assert factory.connect() == "conn"
    assert calls == [
        {"host": "db", "port": 3306, "user": "u", "password": "p", "database": "d", "autocommit": False}
    ]
