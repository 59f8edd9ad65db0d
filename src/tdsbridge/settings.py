"""
Centralized settings for tdsbridge.

:class:`TdsSettings` reads ``TDSBRIDGE_*`` environment variables (and a
``.env`` file) into one validated object, and converts itself into the
adapter's :class:`~tdsbridge.adapters.types.DatabaseConfig`.

Per-shard overrides use the nested delimiter::

    TDSBRIDGE_HOST=sql01
    TDSBRIDGE_USER=app
    TDSBRIDGE_SERVERS__reporting__host=sql02

Tags:
    configuration, settings, pydantic, tdsbridge
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tdsbridge.adapters.types import (
    ConnectionOptions,
    DatabaseConfig,
    IdentifierCase,
    SessionConfig,
    Timezone,
)


class TdsSettings(BaseSettings):
    """tdsbridge configuration.

    All fields can be set via ``TDSBRIDGE_*`` environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="TDSBRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Connection ───────────────────────────────────────────────
    host: str = Field(default="localhost")
    port: int = Field(default=1433)
    user: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)
    database: str | None = Field(default=None)
    appname: str = Field(default="tdsbridge")
    login_timeout: int = Field(default=60)
    timeout: int = Field(default=0, description="Statement timeout in seconds (0 = none)")
    tds_version: str | None = Field(default=None)

    # ── Shards ───────────────────────────────────────────────────
    servers: dict[str, dict[str, Any]] = Field(default_factory=dict)

    # ── Pool ─────────────────────────────────────────────────────
    pool_size: int = Field(default=4, ge=1)
    pool_timeout: float = Field(default=5.0, gt=0)

    # ── Session ──────────────────────────────────────────────────
    identifier_output: IdentifierCase = Field(default=IdentifierCase.NONE)
    database_timezone: Timezone = Field(default=Timezone.LOCAL)
    dialect: str = Field(default="mssql", description="Registered SQL dialect name")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")
    log_sql_max_length: int | None = Field(default=2000, ge=1)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def connection_options(self) -> ConnectionOptions:
        extra: dict[str, Any] = {
            "appname": self.appname,
            "login_timeout": self.login_timeout,
            "timeout": self.timeout,
        }
        if self.tds_version:
            extra["tds_version"] = self.tds_version
        return ConnectionOptions(
            host=self.host,
            user=self.user,
            password=self.password.get_secret_value() if self.password else None,
            database=self.database,
            port=self.port,
            extra=extra,
        )

    def to_database_config(self) -> DatabaseConfig:
        return DatabaseConfig(
            options=self.connection_options(),
            servers={name: dict(values) for name, values in self.servers.items()},
            session=SessionConfig(
                identifier_output=self.identifier_output,
                database_timezone=self.database_timezone,
            ),
            dialect=self.dialect,
            pool_size=self.pool_size,
            pool_timeout=self.pool_timeout,
        )


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, TdsSettings] = {}


def get_settings(*, env_file: str = ".env", _force_reload: bool = False) -> TdsSettings:
    """Load, validate, and cache a :class:`TdsSettings` instance.

    Parameters
    ----------
    env_file:
        Dotenv file to read in addition to the environment.
    _force_reload:
        Bypass cache and reload.
    """
    if not _force_reload and env_file in _settings_cache:
        return _settings_cache[env_file]
    settings = TdsSettings(_env_file=env_file)
    _settings_cache[env_file] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (useful in tests)."""
    _settings_cache.clear()


__all__ = [
    "TdsSettings",
    "get_settings",
    "clear_settings_cache",
]
