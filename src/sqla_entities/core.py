from __future__ import annotations

import sys
import warnings
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, NamedTuple, Union

from .exceptions import QueryError


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from .executor import Executor, Row


# Multi-character operators first so that "<=" is never read as "<".
OPERATORS: Final[tuple[str, ...]] = ("!=", "<>", "<=", ">=", "=", "<", ">")

_OFFSET_LIMIT_DIALECTS: Final[frozenset[str]] = frozenset({"postgresql"})
_NO_TRUNCATE_DIALECTS: Final[frozenset[str]] = frozenset({"sqlite"})

Condition = Union[str, Mapping[Union[str, int], Any], Sequence[str]]
Columns = Union[str, Sequence[str], Mapping[Union[str, int], str]]


class JoinClause(NamedTuple):
    """One ``<side> JOIN <table> ON <condition>`` item for :meth:`QueryBuilder.join`."""

    side: str
    table: str
    condition: str


def parse_value(value: Any) -> str:
    """Render a Python value as it is written into SQL text.

    ``None`` becomes ``NULL``, booleans become ``1`` / ``0`` and everything
    else is converted with ``str()``.  No quoting is applied.

    Example:
        >>> parse_value(None), parse_value(True), parse_value(42)
        ('NULL', '1', '42')
    """
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        return "1" if value else "0"

    return str(value)


def split_operator(value: Any) -> tuple[str, str]:
    """Split a leading comparison operator off *value*.

    Returns ``(operator, operand)``; the operator defaults to ``=`` when the
    value does not start with one of :data:`OPERATORS`.
    """
    text = parse_value(value)
    stripped = text.lstrip()
    for operator in OPERATORS:
        if stripped.startswith(operator):
            return operator, stripped[len(operator) :].strip()

    return "=", text


def _render_columns(columns: Columns) -> str:
    if isinstance(columns, str):
        return columns

    if isinstance(columns, Mapping):
        fields: list[str] = []
        for column, alias in columns.items():
            if isinstance(column, int):
                fields.append(str(alias))
            elif isinstance(column, str):
                fields.append(f"{column} AS {alias}")
            else:
                raise QueryError(
                    f"Invalid column key {column!r}. Only string and integer keys are supported."
                )
        return ", ".join(fields)

    return ", ".join(columns)


def _render_joins(joins: str | Sequence[JoinClause | str]) -> str:
    if isinstance(joins, str):
        return joins

    rendered: list[str] = []
    for join in joins:
        if isinstance(join, JoinClause):
            rendered.append(f"{join.side} JOIN {join.table} ON {join.condition}")
        elif isinstance(join, str):
            rendered.append(join)
        else:
            raise QueryError(f"Invalid value used for join: {join!r}")

    return " ".join(rendered)


def _squash(*parts: str | None) -> str:
    """Join non-empty SQL parts with single spaces."""
    return " ".join(stripped for part in parts if part and (stripped := part.strip()))


class QueryBuilder:
    """Fluent, single-use SQL clause accumulator.

    Clause methods (``where``, ``order``, ``limit``, ``group_by``,
    ``distinct``) only record state and return the builder.  Terminal
    methods (``select``, ``join``, ``count``, ``insert``, ``update``,
    ``delete``, ...) render the statement, run it on the executor and reset
    every clause, so the next call starts from an empty query.  The last
    rendered SQL stays available in ``query_string``.

    Successive ``where`` calls are OR-ed together while the entries of a
    single mapping are AND-ed::

        QueryBuilder(executor, "users").where({"a": 1, "b": 2}).where({"c": 3})
        # ... WHERE (a = 1 AND b = 2) OR (c = 3)

    A builder is not safe for concurrent use: create one per logical query.
    """

    __slots__ = (
        "_distinct",
        "_group",
        "_limit",
        "_order",
        "_where",
        "executor",
        "query_string",
        "table",
    )

    def __init__(self, executor: Executor, table: str | None = None) -> None:
        self.executor = executor
        self.table = table
        self.query_string: str | None = None
        self._where: str | None = None
        self._order: str | None = None
        self._limit: tuple[int, int] | None = None
        self._group: str | None = None
        self._distinct = False

    # clauses

    def from_(self, table: str) -> Self:
        self.table = table
        return self

    def where(self, condition: Condition) -> Self:
        """Add an OR-branch to the WHERE clause.

        Args:
            condition: Raw SQL fragment, sequence of raw fragments, or a
                mapping.  Integer keys of a mapping hold raw fragments;
                string keys are column names whose value may start with a
                comparison operator (``{"age": "> 18"}``), ``=`` otherwise.
        """
        if isinstance(condition, str):
            group = condition
        elif isinstance(condition, Mapping):
            parts: list[str] = []
            for column, value in condition.items():
                if isinstance(column, int):
                    parts.append(parse_value(value))
                    continue

                operator, operand = split_operator(value)
                parts.append(f"{column} {operator} {operand}")
            group = " AND ".join(parts)
        else:
            group = " AND ".join(condition)

        if not group:
            warnings.warn("Empty condition passed to where(); ignored.", stacklevel=2)
            return self

        self._where = f"{self._where} OR ({group})" if self._where is not None else f"({group})"
        return self

    def order(self, column: str, mode: str = "ASC") -> Self:
        self._order = f"{column} {mode}"
        return self

    def limit(self, offset: int, count: int) -> Self:
        self._limit = (int(offset), int(count))
        return self

    def group_by(self, column: str) -> Self:
        self._group = column
        return self

    def distinct(self) -> Self:
        self._distinct = True
        return self

    # rendering

    def _where_sql(self) -> str | None:
        return f"WHERE {self._where}" if self._where is not None else None

    def _order_sql(self) -> str | None:
        return f"ORDER BY {self._order}" if self._order is not None else None

    def _group_sql(self) -> str | None:
        return f"GROUP BY {self._group}" if self._group is not None else None

    def _limit_sql(self) -> str | None:
        if self._limit is None:
            return None

        offset, count = self._limit
        if self.executor.dialect_name in _OFFSET_LIMIT_DIALECTS:
            return f"LIMIT {count} OFFSET {offset}"

        return f"LIMIT {offset}, {count}"

    def _require_table(self) -> str:
        if not self.table:
            raise QueryError("No table selected, call from_() first.")

        return self.table

    def render_select(self, columns: Columns = "*", joins: str | Sequence[JoinClause | str] | None = None) -> str:
        """Render the SELECT statement described by the current clauses."""
        return _squash(
            "SELECT DISTINCT" if self._distinct else "SELECT",
            _render_columns(columns),
            f"FROM {self._require_table()}",
            _render_joins(joins) if joins else None,
            self._where_sql(),
            self._group_sql(),
            self._order_sql(),
            self._limit_sql(),
        )

    def reset_clauses(self) -> None:
        self._where = None
        self._order = None
        self._limit = None
        self._group = None
        self._distinct = False

    def _execute(self, sql: str) -> list[Row] | bool:
        self.query_string = sql
        result = self.executor.prepare(sql).execute()
        self.reset_clauses()

        return result

    def _fetch(self, sql: str) -> list[Row]:
        result = self._execute(sql)
        return result if isinstance(result, list) else []

    # terminal operations

    def select(self, columns: Columns = "*") -> list[Row]:
        """Run the SELECT and return every row as a ``dict``."""
        return self._fetch(self.render_select(columns))

    def select_first(self, columns: Columns = "*") -> Row | None:
        """Run the SELECT and return the first row, or ``None``."""
        rows = self.select(columns)
        return rows[0] if rows else None

    def join(self, columns: Columns, joins: str | Sequence[JoinClause | str]) -> list[Row]:
        """Run a SELECT with JOIN clauses and return every row.

        Example:
            >>> builder.from_("user_roles").where({"user_roles.user_id": 1}).join(
            ...     "roles.*", [JoinClause("LEFT", "roles", "user_roles.role_id = roles.id")]
            ... )
        """
        return self._fetch(self.render_select(columns, joins))

    def count(self, columns: Columns = "*") -> int | dict[Any, int]:
        """Count matching rows.

        Returns a single integer, or ``{group value: count}`` when
        ``group_by()`` was called.
        """
        group = self._group
        sql = _squash(
            f"SELECT {group}," if group is not None else "SELECT",
            f"COUNT({_render_columns(columns)}) AS row_count",
            f"FROM {self._require_table()}",
            self._where_sql(),
            self._group_sql(),
            self._limit_sql(),
        )
        rows = self._fetch(sql)

        if group is None:
            return int(rows[0]["row_count"]) if rows else 0

        counts: dict[Any, int] = {}
        for row in rows:
            key = next(iter(row.values()))
            counts[key] = int(row["row_count"])

        return counts

    def render_insert(self, values: Mapping[str, Any], returning: str | None = None) -> str:
        """Render an INSERT for one row, asking for the generated *returning* column if given.

        The key is requested the connected dialect's way: ``OUTPUT INSERTED``
        on mssql, ``RETURNING`` where the dialect supports it and nothing
        where the driver reports it after the fact.
        """
        table = self._require_table()
        columns = ", ".join(values)
        literals = ", ".join(parse_value(value) for value in values.values())

        strategy = self.executor.key_strategy if returning is not None else None
        if strategy == "output":
            return f"INSERT INTO {table} ({columns}) OUTPUT INSERTED.{returning} VALUES ({literals})"
        if strategy == "returning":
            return f"INSERT INTO {table} ({columns}) VALUES ({literals}) RETURNING {returning}"

        return f"INSERT INTO {table} ({columns}) VALUES ({literals})"

    def insert(self, values: Mapping[str, Any], *, returning: str | None = None) -> bool:
        """Insert one row from a ``column -> value`` mapping.

        With *returning*, the key generated for that column is read back and
        made available through ``executor.last_insert_id()``.
        """
        table = self._require_table()
        result = self._execute(self.render_insert(values, returning))
        if returning is not None:
            self.executor.read_generated_key(table, returning, result)

        return bool(result)

    def insert_many(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> bool:
        """Insert several rows sharing the same column list."""
        if not rows:
            raise QueryError("insert_many() requires at least one row.")

        values = ", ".join(f"({', '.join(parse_value(value) for value in row)})" for row in rows)

        return bool(
            self._execute(
                f"INSERT INTO {self._require_table()} ({', '.join(columns)}) VALUES {values}"
            )
        )

    def update(self, values: Mapping[str, Any] | str) -> bool:
        """Update matching rows from a ``column -> value`` mapping or a raw SET fragment."""
        if isinstance(values, Mapping):
            updates = ", ".join(f"{column} = {parse_value(value)}" for column, value in values.items())
        else:
            updates = values

        return bool(
            self._execute(_squash(f"UPDATE {self._require_table()} SET {updates}", self._where_sql()))
        )

    def delete(self) -> bool:
        """Delete matching rows (every row when no WHERE is set)."""
        return bool(self._execute(_squash(f"DELETE FROM {self._require_table()}", self._where_sql())))

    def truncate(self) -> bool:
        """Remove every row of the table."""
        table = self._require_table()
        if self.executor.dialect_name in _NO_TRUNCATE_DIALECTS:
            return bool(self._execute(f"DELETE FROM {table}"))

        return bool(self._execute(f"TRUNCATE TABLE {table}"))
