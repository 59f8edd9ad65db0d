"""Tests for ``tdsbridge.adapters.pool``: per-shard connection pooling."""

from __future__ import annotations

import threading

import pytest

from tdsbridge.adapters.pool import ConnectionPool
from tdsbridge.errors import DatabaseDisconnectError, PoolTimeoutError, StatementError


class Recorder:
    def __init__(self, fail: bool = False):
        self.opened: list[tuple[str, int]] = []
        self.closed: list[tuple[str, int]] = []
        self.fail = fail

    def connect(self, server):
        if self.fail:
            raise RuntimeError("no route to host")
        conn = (server, len(self.opened))
        self.opened.append(conn)
        return conn

    def disconnect(self, conn):
        self.closed.append(conn)


@pytest.fixture
def recorder():
    return Recorder()


class TestConnectionPoolCheckout:
    def test_reuses_idle_connection(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pool.hold() as first:
            pass
        with pool.hold() as second:
            pass
        assert first is second
        assert len(recorder.opened) == 1
        assert pool.size() == 1
        assert pool.available() == 1

    def test_shards_are_separate(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pool.hold() as a, pool.hold("reporting") as b:
            assert a[0] == "default"
            assert b[0] == "reporting"
        assert pool.size("reporting") == 1

    def test_nested_holds_get_distinct_connections(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect, max_size=2)
        with pool.hold() as a, pool.hold() as b:
            assert a is not b

    def test_timeout_when_exhausted(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect, max_size=1, timeout=0.05)
        with pool.hold():
            with pytest.raises(PoolTimeoutError) as exc_info:
                with pool.hold():
                    pass
        assert exc_info.value.context.server == "default"
        assert exc_info.value.retryable is True

    def test_waiter_gets_released_connection(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect, max_size=1, timeout=2.0)
        got = []
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with pool.hold() as conn:
                got.append(conn)
                acquired.set()
                release.wait(1.0)

        thread = threading.Thread(target=holder)
        thread.start()
        assert acquired.wait(1.0)
        release.set()
        with pool.hold() as conn:
            assert conn is got[0]
        thread.join()

    def test_connect_failure_frees_slot(self):
        recorder = Recorder(fail=True)
        pool = ConnectionPool(recorder.connect, recorder.disconnect, max_size=1)
        with pytest.raises(RuntimeError):
            with pool.hold():
                pass
        assert pool.size() == 0

    def test_invalid_size(self, recorder):
        with pytest.raises(ValueError):
            ConnectionPool(recorder.connect, recorder.disconnect, max_size=0)


class TestConnectionPoolRelease:
    def test_error_returns_connection(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pytest.raises(StatementError):
            with pool.hold():
                raise StatementError("Invalid object name 'nope'.")
        assert pool.available() == 1
        assert recorder.closed == []

    def test_disconnect_error_discards_connection(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pytest.raises(DatabaseDisconnectError):
            with pool.hold() as conn:
                raise DatabaseDisconnectError("DBPROCESS is dead or not enabled")
        assert recorder.closed == [conn]
        assert pool.size() == 0
        assert pool.available() == 0

    def test_unreusable_connection_is_discarded(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect, reusable=lambda conn: conn[1] > 0)
        with pool.hold() as first:
            pass
        assert recorder.closed == [first]
        assert pool.size() == 0
        with pool.hold() as second:
            pass
        assert second != first
        assert pool.available() == 1

    def test_disconnect_closes_idle(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pool.hold():
            pass
        with pool.hold("reporting"):
            pass
        pool.disconnect()
        assert len(recorder.closed) == 2
        assert pool.size() == 0
        assert pool.size("reporting") == 0

    def test_disconnect_one_shard(self, recorder):
        pool = ConnectionPool(recorder.connect, recorder.disconnect)
        with pool.hold():
            pass
        with pool.hold("reporting"):
            pass
        pool.disconnect("reporting")
        assert pool.available() == 1
        assert pool.available("reporting") == 0
