"""Datasets: lazy row streams over one SQL Server query.

A :class:`Dataset` is an immutable query description (table or literal
SQL, where / order / limit / offset, target shard).  Nothing touches the
server until it is iterated; iteration streams rows one at a time out of
the driver, holding a pooled connection only while rows are being read.

Row materialization (:meth:`Dataset.fetch_rows`):

1. ``fields`` are read once and passed through :meth:`output_identifier`;
   the list is stored as :attr:`Dataset.columns`.
2. With identifier normalization on, the driver hands back positional
   tuples that are zipped against the normalized column list.
3. With normalization off, the driver's keyed rows are passed through.
4. With an ``offset``, the ``ROW_NUMBER()`` column the dialect added for
   paging is removed from every row.
5. With a UTC database timezone, the driver is asked for UTC datetimes.

Abandoning the iteration early (``break``, an exception, ``first()``)
cancels the rest of the result before the connection is released.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from tdsbridge.adapters.types import ExecutionRequest, GenericRow, IdentifierCase, Timezone

if TYPE_CHECKING:
    from tdsbridge.adapters.mssql import TdsDatabase


@dataclass(frozen=True)
class DatasetOptions:
    table: str | None = None
    sql: str | None = None
    columns: str = "*"
    where: str | None = None
    order: str | None = None
    limit: int | None = None
    offset: int | None = None
    server: str | None = None


class Dataset:
    """Query builder and row stream bound to a :class:`TdsDatabase`.

    ``columns`` is ``None`` until rows have been fetched, then holds the
    (normalized) column names of the last result.
    """

    def __init__(self, db: TdsDatabase, opts: DatasetOptions | None = None, **kwargs: Any):
        self.db = db
        self.opts = replace(opts or DatasetOptions(), **kwargs)
        self.columns: list[str] | None = None

    # -- Builder -----------------------------------------------------------

    def clone(self, **changes: Any) -> Dataset:
        return Dataset(self.db, replace(self.opts, **changes))

    def where(self, condition: str) -> Dataset:
        if self.opts.where:
            condition = f"({self.opts.where}) AND ({condition})"
        return self.clone(where=condition)

    def order(self, *columns: str) -> Dataset:
        return self.clone(order=", ".join(columns) or None)

    def limit(self, limit: int | None, offset: int | None = None) -> Dataset:
        return self.clone(limit=limit, offset=offset)

    def select(self, *columns: str) -> Dataset:
        quoted = ", ".join(self.db.dialect.quote_identifier(self.input_identifier(c)) for c in columns)
        return self.clone(columns=quoted or "*")

    def server(self, name: str | None) -> Dataset:
        return self.clone(server=name)

    # -- Identifiers -------------------------------------------------------

    @property
    def identifier_output(self) -> IdentifierCase:
        return self.db.session.identifier_output

    def output_identifier(self, name: str) -> str:
        """Column name as it appears in returned rows."""
        if self.identifier_output is IdentifierCase.LOWER:
            return name.lower()
        if self.identifier_output is IdentifierCase.UPPER:
            return name.upper()
        return name

    def input_identifier(self, name: str) -> str:
        # Mixed-case column names are sent as written.
        return name

    @property
    def row_number_column(self) -> str:
        return self.db.dialect.row_number_column

    # -- SQL ---------------------------------------------------------------

    def select_sql(self) -> str:
        opts = self.opts
        if opts.sql is not None:
            if opts.columns == "*" and not any((opts.where, opts.order, opts.limit is not None, opts.offset)):
                return opts.sql
            source = f"({opts.sql}) AS [t0]"
        elif self.opts.table is not None:
            source = self.opts.table
        else:
            raise ValueError("Dataset has neither a table nor SQL")
        return self.db.dialect.select_sql(
            source,
            columns=self.opts.columns,
            where=self.opts.where,
            order=self.opts.order,
            limit=self.opts.limit,
            offset=self.opts.offset,
        )

    def literal_string(self, value: str) -> str:
        return self.db.dialect.literal_string(value)

    def literal(self, value: Any) -> str:
        """Render a Python value as a T-SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, str):
            return self.literal_string(value)
        if isinstance(value, datetime):
            return f"'{value.isoformat(sep='T', timespec='milliseconds')}'"
        if isinstance(value, (date, time)):
            return f"'{value.isoformat()}'"
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        raise TypeError(f"Cannot render {type(value).__name__} as a SQL literal")

    def _require_table(self) -> str:
        if self.opts.table is None:
            raise ValueError("This operation needs a table dataset")
        return self.opts.table

    # -- Rows --------------------------------------------------------------

    def fetch_rows(self, sql: str) -> Iterator[GenericRow]:
        """Stream rows of ``sql`` as dicts (see module docstring)."""
        request = ExecutionRequest(sql=sql, server=self.opts.server, offset=self.opts.offset)
        with self.db.open_result(request.sql, server=request.server) as result:
            each_opts: dict[str, Any] = {"cache_rows": False}
            if self.db.session.database_timezone is Timezone.UTC:
                each_opts["timezone"] = Timezone.UTC

            cols = [self.output_identifier(c) for c in result.fields]
            row_number = self.output_identifier(self.row_number_column)
            offset = request.offset
            self.columns = [c for c in cols if c != row_number] if offset else cols

            if self.db.session.normalizes_identifiers:
                each_opts["as_array"] = True
                for values in result.each(**each_opts):
                    row = dict(zip(cols, values))
                    if offset:
                        row.pop(row_number, None)
                    yield row
            else:
                each_opts["symbolize_keys"] = True
                if offset:
                    for row in result.each(**each_opts):
                        row.pop(row_number, None)
                        yield row
                else:
                    yield from result.each(**each_opts)

    def each(self) -> Iterator[GenericRow]:
        return self.fetch_rows(self.select_sql())

    def __iter__(self) -> Iterator[GenericRow]:
        return self.each()

    def all(self) -> list[GenericRow]:
        return list(self.each())

    def first(self) -> GenericRow | None:
        rows = self.limit(1, self.opts.offset).each()
        try:
            return next(rows, None)
        finally:
            rows.close()

    def count(self) -> int:
        rows = self.clone(columns="COUNT(*) AS [count]", order=None, limit=None, offset=None).all()
        return int(next(iter(rows[0].values()))) if rows else 0

    # -- Writes ------------------------------------------------------------

    def insert(self, values: Mapping[str, Any] | None = None, **kwargs: Any) -> Any:
        """Insert one row; return its identity value (``None`` without one)."""
        data = {**(values or {}), **kwargs}
        sql = self.db.dialect.insert_sql(self._require_table(), data, self.literal)
        return self.db.execute_insert(sql, server=self.opts.server)

    def update(self, values: Mapping[str, Any]) -> int:
        """Update matching rows; return the affected row count."""
        sql = self.db.dialect.update_sql(self._require_table(), values, self.literal, self.opts.where)
        return self.db.execute_dui(sql, server=self.opts.server)

    def delete(self) -> int:
        """Delete matching rows; return the affected row count."""
        sql = self.db.dialect.delete_sql(self._require_table(), self.opts.where)
        return self.db.execute_dui(sql, server=self.opts.server)

    def __repr__(self) -> str:
        return f"<Dataset {self.select_sql()!r}>"


__all__ = [
    "Dataset",
    "DatasetOptions",
]
