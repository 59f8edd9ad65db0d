"""Connection options, session configuration and execution modes."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from tdsbridge.errors import ConfigError

# Shard tag used when the caller does not name one.
DEFAULT_SERVER = "default"

GenericRow = dict[str, Any]


class IdentifierCase(str, Enum):
    """How column identifiers coming back from the server are cased."""

    NONE = "none"    # driver-native casing, rows passed through pre-keyed
    LOWER = "lower"
    UPPER = "upper"


class Timezone(str, Enum):
    """How the driver interprets naive datetime values."""

    LOCAL = "local"
    UTC = "utc"


class ExecutionMode(str, Enum):
    """What ``execute`` hands back from the driver's result object."""

    NONE = "none"                # nothing; unread rows are cancelled
    ROWCOUNT = "rowcount"        # affected row count (UPDATE/DELETE/INSERT)
    INSERTED_ID = "inserted_id"  # SCOPE_IDENTITY() of the inserted row
    DRAIN = "drain"              # exhaust the rows, return nothing (DDL)


@dataclass(frozen=True)
class SessionConfig:
    """Per-database session policy, threaded explicitly into datasets."""

    identifier_output: IdentifierCase = IdentifierCase.NONE
    database_timezone: Timezone = Timezone.LOCAL

    @property
    def normalizes_identifiers(self) -> bool:
        return self.identifier_output is not IdentifierCase.NONE


@dataclass(frozen=True)
class ExecutionRequest:
    """One statement to run; built per call, never persisted."""

    sql: str
    mode: ExecutionMode = ExecutionMode.NONE
    server: str | None = None
    offset: int | None = None


@dataclass
class ConnectionOptions:
    """
    Adapter-level connection options.

    ``host`` and ``user`` are the names the rest of the application uses;
    the TDS driver wants ``dataserver`` and ``username``.  The renaming is
    done by :meth:`to_driver_options` at connect time and never touches
    this object.
    """

    host: str | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    port: int | None = None

    # Vendor passthrough (appname, login_timeout, timeout, tds_version, charset, ...)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> ConnectionOptions:
        known = {"host", "user", "password", "database", "port"}
        return cls(
            **{k: v for k, v in values.items() if k in known},
            extra={k: v for k, v in values.items() if k not in known},
        )

    def as_dict(self) -> dict[str, Any]:
        values: dict[str, Any] = {
            "host": self.host,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "port": self.port,
        }
        values.update(self.extra)
        return {k: v for k, v in values.items() if v is not None}

    def merged(self, overrides: dict[str, Any]) -> ConnectionOptions:
        """Return a copy with ``overrides`` applied on top."""
        values = self.as_dict()
        values.update(overrides)
        return ConnectionOptions.from_mapping(values)

    def to_driver_options(self) -> dict[str, Any]:
        """Full option set for the driver client, plus the TDS names."""
        opts = self.as_dict()
        opts["dataserver"] = self.host
        opts["username"] = self.user
        return opts


@dataclass
class DatabaseConfig:
    """
    Configuration for one logical SQL Server database.

    ``servers`` holds per-shard overrides: ``server_options("reporting")``
    is the default options with ``servers["reporting"]`` merged on top.
    """

    options: ConnectionOptions = field(default_factory=ConnectionOptions)
    servers: dict[str, dict[str, Any]] = field(default_factory=dict)
    session: SessionConfig = field(default_factory=SessionConfig)
    dialect: str = "mssql"

    # Connection pool
    pool_size: int = 4
    pool_timeout: float = 5.0

    def server_options(self, server: str | None = None) -> ConnectionOptions:
        if server is None or server == DEFAULT_SERVER:
            return replace(self.options, extra=dict(self.options.extra))
        try:
            overrides = self.servers[server]
        except KeyError:
            raise ConfigError(f"Unknown server: {server}") from None
        return self.options.merged(overrides)


__all__ = [
    "DEFAULT_SERVER",
    "GenericRow",
    "IdentifierCase",
    "Timezone",
    "ExecutionMode",
    "SessionConfig",
    "ExecutionRequest",
    "ConnectionOptions",
    "DatabaseConfig",
]
