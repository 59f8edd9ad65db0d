"""SQL Server adapter over a TDS driver client.

Architecture::

    DatabaseAdapter (base.py)      Pooling, option resolution, execute_* helpers
        └── TdsDatabase (mssql.py) Connection manager + statement executor

    TdsClient / TdsResult (driver.py)  pymssql._mssql binding
    ConnectionPool (pool.py)           Per-shard exclusive checkout
    DatabaseConfig & co (types.py)     Options, session policy, execution modes

Modules
-------
base            Abstract DatabaseAdapter base class
types           ConnectionOptions, DatabaseConfig, SessionConfig, ExecutionMode
driver          DriverClient / DriverResult protocols + pymssql implementation
pool            ConnectionPool
mssql           TdsDatabase

Guardrails:
    ❌ Holding a ``DriverResult`` outside ``open_result()``
    ✅ ``execute_each()`` / ``Dataset`` iteration inside the checkout
    ❌ Passing ``dataserver`` / ``username`` in application config
    ✅ ``host`` / ``user``; the adapter renames them at connect time
"""

from .base import DatabaseAdapter
from .driver import DRIVER_ERRORS, DriverClient, DriverResult, TdsClient, TdsResult
from .mssql import TdsDatabase, apply_default_nullability
from .pool import ConnectionPool
from .types import (
    DEFAULT_SERVER,
    ConnectionOptions,
    DatabaseConfig,
    ExecutionMode,
    ExecutionRequest,
    GenericRow,
    IdentifierCase,
    SessionConfig,
    Timezone,
)

__all__ = [
    # Types
    "DEFAULT_SERVER",
    "ConnectionOptions",
    "DatabaseConfig",
    "ExecutionMode",
    "ExecutionRequest",
    "GenericRow",
    "IdentifierCase",
    "SessionConfig",
    "Timezone",
    # Driver
    "DRIVER_ERRORS",
    "DriverClient",
    "DriverResult",
    "TdsClient",
    "TdsResult",
    # Pool
    "ConnectionPool",
    # Adapters
    "DatabaseAdapter",
    "TdsDatabase",
    "apply_default_nullability",
]
