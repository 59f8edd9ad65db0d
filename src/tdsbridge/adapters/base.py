"""Database adapter base class.

Manifesto:
    The dataset layer only needs four things from a database: a way to
    run a statement and get back a row count, an inserted id, nothing,
    or a streamed result.  The abstract base owns everything that is not
    driver specific (sharded option resolution, pooled checkout, the
    derived ``execute_*`` helpers, DDL through the dialect) so a concrete
    adapter only implements connect / disconnect / execute.

Features:
    - Abstract ``connect(server)``, ``disconnect_connection(conn)``,
      ``open_result()``, ``execute()``
    - ``synchronize(server)``: exclusive pooled checkout for one call
    - ``execute_dui`` / ``execute_insert`` / ``execute_ddl`` / ``run``
    - ``create_table`` through the injected dialect and the
      ``column_list_sql`` hook
    - Context-manager protocol: ``with TdsDatabase(cfg) as db: ...``

Tags:
    database, abstract-base, adapter-pattern, tdsbridge
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import TYPE_CHECKING, Any

from tdsbridge.dialect import DialectFormatter, TableGenerator, get_dialect

from .driver import DriverClient, DriverResult
from .pool import ConnectionPool
from .types import ConnectionOptions, DatabaseConfig, ExecutionMode, SessionConfig

if TYPE_CHECKING:
    from tdsbridge.dataset import Dataset


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Provides pooling, option resolution and the derived statement
    helpers; subclasses bind them to a driver.
    """

    def __init__(self, config: DatabaseConfig, *, dialect: DialectFormatter | None = None):
        self._config = config
        self._dialect: DialectFormatter = dialect or get_dialect(config.dialect)
        self._pool = ConnectionPool(
            self.connect,
            self.disconnect_connection,
            max_size=config.pool_size,
            timeout=config.pool_timeout,
            reusable=self.connection_reusable,
        )

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def dialect(self) -> DialectFormatter:
        """SQL formatter for this adapter."""
        return self._dialect

    @property
    def session(self) -> SessionConfig:
        return self._config.session

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def server_opts(self, server: str | None = None) -> ConnectionOptions:
        """Connection options for ``server`` (a fresh copy per call)."""
        return self._config.server_options(server)

    # -- Connection lifecycle ----------------------------------------------

    @abstractmethod
    def connect(self, server: str | None = None) -> DriverClient:
        """Open a new driver connection for ``server``."""
        ...

    @abstractmethod
    def disconnect_connection(self, conn: DriverClient) -> None:
        """Close one driver connection. Must not raise."""
        ...

    def connection_reusable(self, conn: DriverClient) -> bool:
        """False while ``conn`` still has unread results on the wire."""
        return not conn.sqlsent()

    def synchronize(self, server: str | None = None) -> AbstractContextManager[DriverClient]:
        """Exclusive use of one pooled connection for the scope."""
        return self._pool.hold(server)

    def disconnect(self) -> None:
        """Close every idle pooled connection."""
        self._pool.disconnect()

    # -- Statement execution -----------------------------------------------

    @abstractmethod
    @contextmanager
    def open_result(self, sql: str, *, server: str | None = None) -> Iterator[DriverResult]:
        """Send ``sql`` and yield the raw result inside the checkout."""
        ...

    @abstractmethod
    def execute(
        self,
        sql: str,
        *,
        mode: ExecutionMode = ExecutionMode.NONE,
        server: str | None = None,
    ) -> Any:
        """Execute ``sql`` and return what ``mode`` extracts."""
        ...

    def execute_each(
        self,
        sql: str,
        consumer: Callable[[DriverResult], Any],
        *,
        server: str | None = None,
    ) -> Any:
        """Hand the raw result to ``consumer``; return its value."""
        with self.open_result(sql, server=server) as result:
            return consumer(result)

    def execute_dui(self, sql: str, *, server: str | None = None) -> int:
        """Return the number of rows modified by ``sql``."""
        return self.execute(sql, mode=ExecutionMode.ROWCOUNT, server=server)

    def execute_insert(self, sql: str, *, server: str | None = None) -> Any:
        """Return the autogenerated primary key of the inserted row, if any."""
        return self.execute(sql, mode=ExecutionMode.INSERTED_ID, server=server)

    def execute_ddl(self, sql: str, *, server: str | None = None) -> None:
        """Execute DDL, discarding any rows."""
        self.execute(sql, mode=ExecutionMode.DRAIN, server=server)
        return None

    def run(self, sql: str, *, server: str | None = None) -> None:
        self.execute_ddl(sql, server=server)

    def test_connection(self, server: str | None = None) -> bool:
        """Run ``SELECT 1`` on ``server``; errors propagate."""
        self.execute_ddl("SELECT 1", server=server)
        return True

    # -- Schema ------------------------------------------------------------

    def column_list_sql(self, generator: TableGenerator) -> str:
        return self._dialect.column_list_sql(generator)

    def create_table_sql(self, name: str, generator: TableGenerator) -> str:
        return self._dialect.create_table_sql(name, self.column_list_sql(generator))

    def create_table(self, name: str, generator: TableGenerator, *, server: str | None = None) -> None:
        self.execute_ddl(self.create_table_sql(name, generator), server=server)

    def drop_table(self, name: str, *, server: str | None = None) -> None:
        self.execute_ddl(f"DROP TABLE {self._dialect.quote_identifier(name)}", server=server)

    # -- Datasets ----------------------------------------------------------

    @abstractmethod
    def dataset(self, **opts: Any) -> Dataset:
        """Return a dataset bound to this database."""
        ...

    def fetch(self, sql: str, **opts: Any) -> Dataset:
        """Dataset over a literal SQL query."""
        return self.dataset(sql=sql, **opts)

    def __getitem__(self, table: str) -> Dataset:
        return self.dataset(table=table)

    def __enter__(self) -> DatabaseAdapter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


__all__ = [
    "DatabaseAdapter",
]
