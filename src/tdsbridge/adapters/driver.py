"""TDS driver binding.

The executor talks to the server through two small protocols,
:class:`DriverClient` and :class:`DriverResult`.  :class:`TdsClient` is
the production implementation on top of ``pymssql._mssql`` (FreeTDS
``dblib``), which keeps one pending result per connection exactly like
the wire protocol does: a result that is neither drained nor cancelled
blocks the next batch on that connection.

Install the driver::

    pip install pymssql

Option names follow the TDS client convention (``dataserver``,
``username``); :meth:`ConnectionOptions.to_driver_options` produces them.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from pymssql import _mssql

from tdsbridge.errors import CancellationFailure

from .types import Timezone

# Exceptions the executor translates into the StatementError taxonomy.
DRIVER_ERRORS: tuple[type[BaseException], ...] = (_mssql.MSSQLException,)

# TDS option name -> _mssql.connect keyword
_OPTION_MAP = {
    "dataserver": "server",
    "username": "user",
    "password": "password",
    "database": "database",
    "port": "port",
    "appname": "appname",
    "charset": "charset",
    "login_timeout": "login_timeout",
    "timeout": "timeout",
    "tds_version": "tds_version",
}


@runtime_checkable
class DriverResult(Protocol):
    """Single-pass handle over one statement's result rows."""

    @property
    def fields(self) -> list[str]: ...

    def each(
        self,
        *,
        cache_rows: bool = False,
        symbolize_keys: bool = False,
        timezone: Timezone = Timezone.LOCAL,
        as_array: bool = False,
    ) -> Iterator[Any]: ...

    def drain(self) -> None: ...

    def do(self) -> int: ...

    def insert(self) -> Any: ...

    def cancel(self) -> None: ...


@runtime_checkable
class DriverClient(Protocol):
    """One open session to the server."""

    def execute(self, sql: str) -> DriverResult: ...

    def sqlsent(self) -> bool: ...

    def close(self) -> None: ...


def _as_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TdsResult:
    """Result of one ``execute`` on a :class:`TdsClient`."""

    def __init__(self, client: TdsClient):
        self._client = client
        self._conn = client.raw
        self._fields: list[str] | None = None
        self.rows: list[Any] = []

    @property
    def fields(self) -> list[str]:
        if self._fields is None:
            header = self._conn.get_header() or []
            self._fields = [column[0] for column in header]
        return self._fields

    def each(
        self,
        *,
        cache_rows: bool = False,
        symbolize_keys: bool = False,
        timezone: Timezone = Timezone.LOCAL,
        as_array: bool = False,
    ) -> Iterator[Any]:
        """Yield rows as tuples (``as_array``) or dicts keyed by column name.

        ``symbolize_keys`` is accepted for signature compatibility; Python
        rows are always keyed by ``str``.  With ``cache_rows`` the rows are
        also kept on ``self.rows``.  Once the rows run out, any further
        result sets of the batch are read so that their errors surface.
        """
        fields = self.fields
        width = len(fields)
        if cache_rows:
            self.rows = []
        for raw in self._conn:
            values = tuple(raw[i] for i in range(width))
            if timezone is Timezone.UTC:
                values = tuple(_as_utc(v) for v in values)
            row: Any = values if as_array else dict(zip(fields, values))
            if cache_rows:
                self.rows.append(row)
            yield row
        self._finish()

    def _finish(self) -> None:
        # Errors of later statements in a batch are raised by nextresult.
        while self._conn.nextresult():
            for _ in self._conn:
                pass
        self._client._statement_finished()

    def drain(self) -> None:
        """Read every row of every result set of the batch."""
        for _ in self._conn:
            pass
        self._finish()

    def do(self) -> int:
        """Drain the result and return the affected row count."""
        self.drain()
        return self._conn.rows_affected

    def insert(self) -> Any:
        """Drain the result and return ``SCOPE_IDENTITY()`` (``None`` if unset)."""
        self.drain()
        identity = self._conn.identity
        if identity is not None and float(identity).is_integer():
            return int(identity)
        return identity

    def cancel(self) -> None:
        """Discard unread results.  On failure the client stays pending."""
        try:
            self._conn.cancel()
        except DRIVER_ERRORS as e:
            raise CancellationFailure(f"Failed to cancel pending result: {e}", cause=e) from e
        self._client._statement_finished()


class TdsClient:
    """``pymssql._mssql`` session exposing the :class:`DriverClient` API."""

    def __init__(self, options: dict[str, Any]):
        kwargs = {
            _OPTION_MAP[key]: value
            for key, value in options.items()
            if key in _OPTION_MAP and value is not None
        }
        if "port" in kwargs:
            kwargs["port"] = str(kwargs["port"])
        self.options = options
        self.raw = _mssql.connect(**kwargs)
        self._pending = False

    @property
    def closed(self) -> bool:
        return not self.raw.connected

    def execute(self, sql: str) -> TdsResult:
        self._pending = True
        try:
            self.raw.execute_query(sql)
        except DRIVER_ERRORS:
            self._pending = False
            raise
        return TdsResult(self)

    def sqlsent(self) -> bool:
        """True while a sent statement still has unread results."""
        return self._pending

    def _statement_finished(self) -> None:
        self._pending = False

    def close(self) -> None:
        self._pending = False
        self.raw.close()


__all__ = [
    "DRIVER_ERRORS",
    "DriverClient",
    "DriverResult",
    "TdsClient",
    "TdsResult",
]
