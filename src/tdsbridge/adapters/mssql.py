"""SQL Server adapter over the TDS driver client.

Manifesto:
    A TDS connection can hold exactly one pending result.  If a caller
    stops reading halfway (an exception in a row consumer, an abandoned
    generator, an early ``return``) and the connection goes back to the
    pool with rows still on the wire, the *next* statement on that
    connection fails or, worse, reads someone else's rows.

    :meth:`TdsDatabase.open_result` is therefore the only place a
    result object exists.  It is a scoped resource: however the scope is
    left, a result whose connection still reports ``sqlsent()`` is
    cancelled before the connection is released.

Architecture::

    execute(sql, mode) ─┐
    execute_each(sql, fn)┼─> open_result(sql, server)
    Dataset.fetch_rows ─┘       │ synchronize(server)   pool checkout
                                │ client.execute(sql)   log + send
                                │ yield result
                                │ driver error -> translate_driver_error
                                └ finally: cancel if client.sqlsent()

Extraction is an explicit table from :class:`ExecutionMode` to a
function of the result, so an unsupported mode fails at import time
rather than through a missing method at runtime.

Tags:
    mssql, tds, adapter, statement-execution, tdsbridge
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from tdsbridge.dataset import Dataset
from tdsbridge.dialect import DialectFormatter, TableGenerator
from tdsbridge.errors import (
    CancellationFailure,
    DatabaseConnectionError,
    translate_driver_error,
)
from tdsbridge.logging import LogContext, get_logger

from .base import DatabaseAdapter
from .driver import DRIVER_ERRORS, DriverClient, DriverResult, TdsClient
from .types import DEFAULT_SERVER, DatabaseConfig, ExecutionMode, ExecutionRequest

logger = get_logger(__name__)


_EXTRACTORS: dict[ExecutionMode, Callable[[DriverResult], Any]] = {
    ExecutionMode.NONE: lambda result: None,
    ExecutionMode.ROWCOUNT: lambda result: result.do(),
    ExecutionMode.INSERTED_ID: lambda result: result.insert(),
    ExecutionMode.DRAIN: lambda result: result.drain(),
}

if set(_EXTRACTORS) != set(ExecutionMode):  # pragma: no cover
    raise RuntimeError("every ExecutionMode needs an extractor")


def apply_default_nullability(generator: TableGenerator) -> TableGenerator:
    """Mark columns NULL unless they are keys or say otherwise.

    SQL Server declares new columns NOT NULL unless told otherwise
    (depending on ANSI_NULL_DFLT settings).  Columns that are not part of
    the primary key and carry no ``null`` / ``allow_null`` get
    ``null=True``.  Returns a new generator; the input is left alone.
    """
    pks = generator.primary_key_columns()
    columns = [
        replace(c, null=True)
        if c.name not in pks and not c.primary_key and not c.has_nullability
        else c
        for c in generator.columns
    ]
    return TableGenerator(columns=columns, constraints=list(generator.constraints))


class TdsDatabase(DatabaseAdapter):
    """SQL Server database bound to a TDS driver client.

    Args:
        config: Connection options, shard overrides, pool and session policy.
        client_factory: Builds one driver connection from the driver
            option dict. Defaults to :class:`TdsClient` (pymssql).
        dialect: SQL formatter; defaults to the dialect registered under
            ``config.dialect``.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        client_factory: Callable[[dict[str, Any]], DriverClient] = TdsClient,
        dialect: DialectFormatter | None = None,
    ):
        self._client_factory = client_factory
        super().__init__(config, dialect=dialect)

    # -- Connection manager ------------------------------------------------

    def connect(self, server: str | None = None) -> DriverClient:
        """Open a driver connection, mapping ``host``/``user`` to TDS names."""
        opts = self.server_opts(server).to_driver_options()
        try:
            client = self._client_factory(opts)
        except DRIVER_ERRORS as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQL Server: {e}",
                cause=e,
            ).with_context(server=server or DEFAULT_SERVER) from e
        logger.info("connection.opened", server=server or DEFAULT_SERVER, dataserver=opts.get("dataserver"))
        return client

    def disconnect_connection(self, conn: DriverClient) -> None:
        try:
            conn.close()
        except DRIVER_ERRORS as e:
            logger.warning("connection.close_failed", error=str(e))
            return
        logger.debug("connection.closed")

    # -- Statement executor ------------------------------------------------

    @contextmanager
    def open_result(self, sql: str, *, server: str | None = None) -> Iterator[DriverResult]:
        """Yield the raw result of ``sql`` while holding its connection.

        Driver errors are translated into :class:`StatementError`
        subclasses.  On exit, a still-pending result is cancelled before
        the connection goes back to the pool.  Events logged inside the
        scope (connect, cancel, pool discard, the caller's own) carry
        ``server``.
        """
        shard = server or DEFAULT_SERVER
        with LogContext(server=shard), self.synchronize(server) as conn:
            result: DriverResult | None = None
            try:
                logger.debug("sql.execute", sql=sql, server=shard)
                start = time.perf_counter()
                try:
                    result = conn.execute(sql)
                    yield result
                except DRIVER_ERRORS as e:
                    duration_ms = round((time.perf_counter() - start) * 1000, 3)
                    logger.error("sql.failed", sql=sql, server=shard, duration_ms=duration_ms, error=str(e))
                    raise translate_driver_error(e, sql=sql, server=shard) from e
                duration_ms = round((time.perf_counter() - start) * 1000, 3)
                logger.info("sql.completed", sql=sql, server=shard, duration_ms=duration_ms)
            finally:
                if result is not None and conn.sqlsent():
                    self._cancel(result, shard)

    def _cancel(self, result: DriverResult, server: str) -> None:
        try:
            result.cancel()
        except CancellationFailure as e:
            logger.warning("sql.cancel_failed", server=server, error=str(e))

    def execute(
        self,
        sql: str,
        *,
        mode: ExecutionMode = ExecutionMode.NONE,
        server: str | None = None,
    ) -> Any:
        """Execute ``sql`` and return the value ``mode`` extracts.

        ``NONE`` returns ``None`` (unread rows are cancelled), ``ROWCOUNT``
        the affected row count, ``INSERTED_ID`` the new identity value or
        ``None``, ``DRAIN`` exhausts all rows and returns ``None``.
        """
        return self.execute_request(ExecutionRequest(sql=sql, mode=ExecutionMode(mode), server=server))

    def execute_request(self, request: ExecutionRequest) -> Any:
        extract = _EXTRACTORS[request.mode]
        with self.open_result(request.sql, server=request.server) as result:
            return extract(result)

    # -- Dialect hooks -----------------------------------------------------

    def column_list_sql(self, generator: TableGenerator) -> str:
        return super().column_list_sql(apply_default_nullability(generator))

    # -- Datasets ----------------------------------------------------------

    def dataset(self, **opts: Any) -> Dataset:
        return Dataset(self, **opts)


__all__ = [
    "TdsDatabase",
    "apply_default_nullability",
]
