"""Tests for ``tdsbridge.adapters.driver``: the pymssql binding."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from pymssql import _mssql

from tdsbridge.adapters.driver import DriverClient, DriverResult, TdsClient, TdsResult
from tdsbridge.adapters.types import ConnectionOptions, Timezone
from tdsbridge.errors import CancellationFailure


def _raw_connection(rows=(), header=(("id",), ("name",))):
    raw = MagicMock()
    raw.get_header.return_value = [(name, 1, None, None, None, None, None) for (name,) in header]
    # _mssql rows are keyed by both position and column name
    raw.__iter__.return_value = iter(
        [{**dict(enumerate(values)), **dict(zip([h[0] for h in header], values))} for values in rows]
    )
    raw.nextresult.return_value = None
    raw.rows_affected = 0
    raw.identity = None
    raw.connected = True
    return raw


@pytest.fixture
def mssql_connect():
    with patch("tdsbridge.adapters.driver._mssql.connect") as connect:
        yield connect


class TestTdsClientConnect:
    def test_maps_tds_option_names(self, mssql_connect):
        opts = ConnectionOptions(
            host="sql01",
            user="app",
            password="pw",
            database="billing",
            port=1433,
            extra={"appname": "tests", "tds_version": "7.4", "unknown": "dropped"},
        ).to_driver_options()
        TdsClient(opts)
        mssql_connect.assert_called_once_with(
            server="sql01",
            user="app",
            password="pw",
            database="billing",
            port="1433",
            appname="tests",
            tds_version="7.4",
        )

    def test_driver_error_propagates(self, mssql_connect):
        mssql_connect.side_effect = _mssql.MSSQLDriverException("Unable to connect")
        with pytest.raises(_mssql.MSSQLDriverException):
            TdsClient({"dataserver": "nowhere"})

    def test_satisfies_protocol(self, mssql_connect):
        mssql_connect.return_value = _raw_connection()
        client = TdsClient({"dataserver": "sql01"})
        assert isinstance(client, DriverClient)
        assert isinstance(client.execute("SELECT 1"), DriverResult)

    def test_close(self, mssql_connect):
        raw = _raw_connection()
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        client.close()
        raw.close.assert_called_once()


class TestTdsClientPending:
    def test_pending_until_read(self, mssql_connect):
        mssql_connect.return_value = _raw_connection(rows=[(1, "a")])
        client = TdsClient({"dataserver": "sql01"})
        result = client.execute("SELECT id, name FROM t")
        assert client.sqlsent() is True
        list(result.each())
        assert client.sqlsent() is False

    def test_failed_execute_is_not_pending(self, mssql_connect):
        raw = _raw_connection()
        raw.execute_query.side_effect = _mssql.MSSQLDriverException("Invalid object name 't'.")
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        with pytest.raises(_mssql.MSSQLDriverException):
            client.execute("SELECT * FROM t")
        assert client.sqlsent() is False

    def test_cancel_clears_pending(self, mssql_connect):
        raw = _raw_connection(rows=[(1, "a")])
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        client.execute("SELECT * FROM t").cancel()
        raw.cancel.assert_called_once()
        assert client.sqlsent() is False

    def test_cancel_failure_stays_pending(self, mssql_connect):
        raw = _raw_connection()
        raw.cancel.side_effect = _mssql.MSSQLDriverException("DBPROCESS is dead")
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        result = client.execute("SELECT * FROM t")
        with pytest.raises(CancellationFailure):
            result.cancel()
        assert client.sqlsent() is True


class TestTdsResult:
    def _result(self, mssql_connect, **kwargs) -> TdsResult:
        mssql_connect.return_value = _raw_connection(**kwargs)
        return TdsClient({"dataserver": "sql01"}).execute("SELECT * FROM t")

    def test_fields(self, mssql_connect):
        assert self._result(mssql_connect).fields == ["id", "name"]

    def test_each_dicts(self, mssql_connect):
        result = self._result(mssql_connect, rows=[(1, "a"), (2, "b")])
        assert list(result.each()) == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_each_arrays(self, mssql_connect):
        result = self._result(mssql_connect, rows=[(1, "a")])
        assert list(result.each(as_array=True)) == [(1, "a")]

    def test_rows_start_empty(self, mssql_connect):
        assert self._result(mssql_connect).rows == []

    def test_cache_rows(self, mssql_connect):
        result = self._result(mssql_connect, rows=[(1, "a")])
        list(result.each(cache_rows=True, as_array=True))
        assert result.rows == [(1, "a")]

    def test_utc_marks_naive_datetimes(self, mssql_connect):
        naive = datetime(2024, 1, 1, 9, 30)
        result = self._result(mssql_connect, rows=[(naive,)], header=(("at",),))
        (row,) = result.each(as_array=True, timezone=Timezone.UTC)
        assert row[0] == naive.replace(tzinfo=UTC)

    def test_local_keeps_naive_datetimes(self, mssql_connect):
        naive = datetime(2024, 1, 1, 9, 30)
        result = self._result(mssql_connect, rows=[(naive,)], header=(("at",),))
        (row,) = result.each(as_array=True)
        assert row[0].tzinfo is None

    def test_do_returns_rows_affected(self, mssql_connect):
        raw = _raw_connection()
        raw.rows_affected = 3
        mssql_connect.return_value = raw
        assert TdsClient({"dataserver": "sql01"}).execute("UPDATE t SET a = 1").do() == 3

    def test_insert_returns_integral_identity(self, mssql_connect):
        raw = _raw_connection()
        raw.identity = Decimal("42")
        mssql_connect.return_value = raw
        identity = TdsClient({"dataserver": "sql01"}).execute("INSERT INTO t DEFAULT VALUES").insert()
        assert identity == 42
        assert isinstance(identity, int)

    def test_insert_without_identity(self, mssql_connect):
        result = self._result(mssql_connect)
        assert result.insert() is None


class TestTdsResultBatches:
    def test_drain_reads_every_result_set(self, mssql_connect):
        raw = _raw_connection(rows=[(1, "a")])
        raw.nextresult.side_effect = [1, None]
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        client.execute("SELECT * FROM t; SELECT * FROM u").drain()
        assert raw.nextresult.call_count == 2
        assert client.sqlsent() is False

    def test_drain_raises_error_of_later_statement(self, mssql_connect):
        raw = _raw_connection(rows=[(1, "a")])
        raw.nextresult.side_effect = _mssql.MSSQLDriverException(
            "There is already an object named 'x' in the database."
        )
        mssql_connect.return_value = raw
        client = TdsClient({"dataserver": "sql01"})
        result = client.execute("SELECT 1; CREATE TABLE x (a int)")
        with pytest.raises(_mssql.MSSQLDriverException, match="already an object"):
            result.drain()
        assert client.sqlsent() is True

    def test_each_raises_error_of_later_statement(self, mssql_connect):
        raw = _raw_connection(rows=[(1, "a")])
        raw.nextresult.side_effect = _mssql.MSSQLDriverException("Divide by zero error encountered.")
        mssql_connect.return_value = raw
        result = TdsClient({"dataserver": "sql01"}).execute("SELECT * FROM t; SELECT 1/0")
        rows = result.each()
        assert next(rows) == {"id": 1, "name": "a"}
        with pytest.raises(_mssql.MSSQLDriverException, match="Divide by zero"):
            next(rows)

    def test_do_counts_after_all_result_sets(self, mssql_connect):
        raw = _raw_connection()
        raw.nextresult.side_effect = [1, None]
        raw.rows_affected = 2
        mssql_connect.return_value = raw
        assert TdsClient({"dataserver": "sql01"}).execute("UPDATE t SET a = 1; UPDATE u SET b = 2").do() == 2
