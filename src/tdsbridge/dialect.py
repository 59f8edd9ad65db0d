"""SQL Server dialect: identifier quoting, DDL and SELECT fragments.

The adapter depends on the :class:`DialectFormatter` protocol and gets a
concrete formatter injected (``MSSQLDialect`` by default), so tests and
other T-SQL flavours can swap it without subclassing the adapter.

Features:
    - **Bracket quoting:** ``[dbo].[order]``; ``]`` doubled
    - **DDL:** column definitions, table constraints, ``IDENTITY(1,1)``
    - **Paging:** ``TOP (n)`` for limits, ``ROW_NUMBER() OVER`` in a
      subselect for offsets (the numbering column is named by
      ``row_number_column`` and stripped again by the dataset)

Examples:
    >>> d = MSSQLDialect()
    >>> d.quote_identifier("dbo.order")
    '[dbo].[order]'
    >>> d.select_sql("items", order="[id]", limit=10, offset=20)  # doctest: +ELLIPSIS
    'SELECT TOP (10) * FROM (SELECT *, ROW_NUMBER() OVER (ORDER BY [id]) AS [x_row_number_x] ...'

Guardrails:
    ❌ DON'T: interpolate user values into ``where`` strings
    ✅ DO: render values through ``Dataset.literal``

Tags:
    dialect, sql, mssql, t-sql, ddl, tdsbridge
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from tdsbridge.errors import ConfigError

ROW_NUMBER_COLUMN = "x_row_number_x"

# Python type -> SQL Server column type
_TYPE_MAP: dict[type, str] = {
    int: "integer",
    str: "nvarchar(255)",
    float: "float",
    bool: "bit",
    Decimal: "numeric(18, 2)",
    datetime: "datetime2",
    date: "date",
    bytes: "varbinary(max)",
}


@dataclass
class ColumnSpec:
    """One column of a ``CREATE TABLE``.

    ``null`` / ``allow_null`` left as ``None`` means "no explicit
    nullability"; the adapter fills that in before formatting.
    """

    name: str
    type: str | type = "integer"
    primary_key: bool = False
    auto_increment: bool = False
    null: bool | None = None
    allow_null: bool | None = None
    default: Any = None
    unique: bool = False

    @property
    def has_nullability(self) -> bool:
        return self.null is not None or self.allow_null is not None


@dataclass
class Constraint:
    """Table-level constraint: ``primary_key``, ``unique`` or ``check``."""

    type: str
    columns: list[str] = field(default_factory=list)
    name: str | None = None
    expression: str | None = None


@dataclass
class TableGenerator:
    """Collects columns and constraints for ``create_table``.

    Usage:
        g = TableGenerator()
        g.primary_key("id")
        g.column("name", str)
        db.create_table("people", g)
    """

    columns: list[ColumnSpec] = field(default_factory=list)
    constraints: list[Constraint] = field(default_factory=list)

    def column(self, name: str, type: str | type = "integer", **opts: Any) -> TableGenerator:
        self.columns.append(ColumnSpec(name=name, type=type, **opts))
        return self

    def primary_key(self, name: str | list[str], type: str | type = "integer", **opts: Any) -> TableGenerator:
        """Single auto-increment key column, or a composite key constraint."""
        if isinstance(name, list):
            self.constraints.append(Constraint(type="primary_key", columns=name, name=opts.get("name")))
            return self
        opts.setdefault("auto_increment", True)
        self.columns.append(ColumnSpec(name=name, type=type, primary_key=True, **opts))
        return self

    def unique(self, columns: list[str], name: str | None = None) -> TableGenerator:
        self.constraints.append(Constraint(type="unique", columns=columns, name=name))
        return self

    def check(self, expression: str, name: str | None = None) -> TableGenerator:
        self.constraints.append(Constraint(type="check", expression=expression, name=name))
        return self

    def primary_key_columns(self) -> list[str]:
        """Columns named by the (last) primary key constraint."""
        pks: list[str] = []
        for constraint in self.constraints:
            if constraint.type == "primary_key":
                pks = constraint.columns
        return pks


@runtime_checkable
class DialectFormatter(Protocol):
    """SQL generation contract the adapter depends on."""

    @property
    def row_number_column(self) -> str: ...

    def quote_identifier(self, name: str) -> str: ...

    def literal_string(self, text: str) -> str: ...

    def column_definition_sql(self, column: ColumnSpec) -> str: ...

    def column_list_sql(self, generator: TableGenerator) -> str: ...

    def create_table_sql(self, name: str, column_list: str) -> str: ...

    def select_sql(
        self,
        source: str,
        *,
        columns: str = "*",
        where: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> str: ...

    def insert_sql(self, table: str, values: Mapping[str, Any], literal: Callable[[Any], str]) -> str: ...

    def update_sql(
        self,
        table: str,
        values: Mapping[str, Any],
        literal: Callable[[Any], str],
        where: str | None = None,
    ) -> str: ...

    def delete_sql(self, table: str, where: str | None = None) -> str: ...


class MSSQLDialect:
    """T-SQL formatter for SQL Server 2005+."""

    @property
    def name(self) -> str:
        return "mssql"

    @property
    def row_number_column(self) -> str:
        return ROW_NUMBER_COLUMN

    # -- Identifiers -------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        return ".".join(f"[{part.replace(']', ']]')}]" for part in name.split("."))

    def literal_string(self, text: str) -> str:
        """Unicode string literal with single quotes doubled."""
        return "N'" + text.replace("'", "''") + "'"

    def _source(self, source: str) -> str:
        # Raw SQL (subselects, pre-quoted names) passes through untouched.
        if source.lstrip().startswith(("(", "[")) or " " in source.strip():
            return source
        return self.quote_identifier(source)

    # -- DDL ---------------------------------------------------------------

    def type_literal(self, type_: str | type) -> str:
        if isinstance(type_, str):
            return type_
        try:
            return _TYPE_MAP[type_]
        except KeyError:
            raise ValueError(f"No SQL Server type for {type_!r}") from None

    def column_definition_sql(self, column: ColumnSpec) -> str:
        parts = [self.quote_identifier(column.name), self.type_literal(column.type)]
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal_default(column.default)}")
        null = column.null if column.null is not None else column.allow_null
        if null is True:
            parts.append("NULL")
        elif null is False:
            parts.append("NOT NULL")
        if column.unique:
            parts.append("UNIQUE")
        if column.primary_key:
            parts.append("PRIMARY KEY")
        if column.auto_increment:
            parts.append("IDENTITY(1,1)")
        return " ".join(parts)

    def literal_default(self, value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return self.literal_string(str(value))

    def constraint_sql(self, constraint: Constraint) -> str:
        prefix = f"CONSTRAINT {self.quote_identifier(constraint.name)} " if constraint.name else ""
        columns = ", ".join(self.quote_identifier(c) for c in constraint.columns)
        if constraint.type == "primary_key":
            return f"{prefix}PRIMARY KEY ({columns})"
        if constraint.type == "unique":
            return f"{prefix}UNIQUE ({columns})"
        if constraint.type == "check":
            return f"{prefix}CHECK ({constraint.expression})"
        raise ValueError(f"Unsupported constraint type: {constraint.type}")

    def column_list_sql(self, generator: TableGenerator) -> str:
        parts = [self.column_definition_sql(c) for c in generator.columns]
        parts.extend(self.constraint_sql(c) for c in generator.constraints)
        return ", ".join(parts)

    def create_table_sql(self, name: str, column_list: str) -> str:
        return f"CREATE TABLE {self.quote_identifier(name)} ({column_list})"

    # -- DML ---------------------------------------------------------------

    def select_sql(
        self,
        source: str,
        *,
        columns: str = "*",
        where: str | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> str:
        top = f"TOP ({int(limit)}) " if limit is not None else ""
        where_sql = f" WHERE {where}" if where else ""
        if not offset:
            order_sql = f" ORDER BY {order}" if order else ""
            return f"SELECT {top}{columns} FROM {self._source(source)}{where_sql}{order_sql}"

        if not order:
            raise ValueError("SQL Server requires an order when using an offset")
        rn = self.quote_identifier(self.row_number_column)
        inner = (
            f"SELECT {columns}, ROW_NUMBER() OVER (ORDER BY {order}) AS {rn} "
            f"FROM {self._source(source)}{where_sql}"
        )
        return f"SELECT {top}* FROM ({inner}) AS [t1] WHERE {rn} > {int(offset)} ORDER BY {rn}"

    def insert_sql(self, table: str, values: Mapping[str, Any], literal: Callable[[Any], str]) -> str:
        if not values:
            return f"INSERT INTO {self.quote_identifier(table)} DEFAULT VALUES"
        columns = ", ".join(self.quote_identifier(c) for c in values)
        rendered = ", ".join(literal(v) for v in values.values())
        return f"INSERT INTO {self.quote_identifier(table)} ({columns}) VALUES ({rendered})"

    def update_sql(
        self,
        table: str,
        values: Mapping[str, Any],
        literal: Callable[[Any], str],
        where: str | None = None,
    ) -> str:
        assignments = ", ".join(f"{self.quote_identifier(c)} = {literal(v)}" for c, v in values.items())
        where_sql = f" WHERE {where}" if where else ""
        return f"UPDATE {self.quote_identifier(table)} SET {assignments}{where_sql}"

    def delete_sql(self, table: str, where: str | None = None) -> str:
        where_sql = f" WHERE {where}" if where else ""
        return f"DELETE FROM {self.quote_identifier(table)}{where_sql}"


_DIALECTS: dict[str, DialectFormatter] = {
    "mssql": MSSQLDialect(),
    "tinytds": MSSQLDialect(),
}


def get_dialect(name: str = "mssql") -> DialectFormatter:
    """Get a pre-instantiated dialect by name.

    Raises:
        ConfigError: If ``name`` is not registered.
    """
    key = name.lower()
    if key not in _DIALECTS:
        raise ConfigError(f"Unknown dialect '{name}'. Supported: {sorted(_DIALECTS)}")
    return _DIALECTS[key]


def register_dialect(name: str, dialect: DialectFormatter) -> None:
    """Register a custom dialect implementation (lower-cased key)."""
    _DIALECTS[name.lower()] = dialect


__all__ = [
    "ROW_NUMBER_COLUMN",
    "ColumnSpec",
    "Constraint",
    "TableGenerator",
    "DialectFormatter",
    "MSSQLDialect",
    "get_dialect",
    "register_dialect",
]
