from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal
from functools import wraps
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar, final

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc

from .exceptions import QueryError


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from types import TracebackType


logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

Row = dict[str, Any]

_LITERAL_TYPES = (str, int, float, Decimal)

# drivers whose cursor.lastrowid is the generated key
_LASTROWID_DIALECTS = frozenset({"sqlite", "mysql", "mariadb"})


def generated_key_strategy(dialect_name: str, insert_returning: bool) -> str:
    """Tell how the key generated by an INSERT is read back on a dialect.

    - ``"lastrowid"``: the cursor attribute holds the key.
    - ``"output"``: ``OUTPUT INSERTED.<column>`` inside the INSERT (mssql).
    - ``"returning"``: ``RETURNING <column>`` after the INSERT.
    - ``"rowid"``: the cursor holds a ROWID the row is selected back by (oracle).
    - ``"identity"``: ``SELECT @@IDENTITY`` once the INSERT has run (sybase).
    """
    if dialect_name in _LASTROWID_DIALECTS:
        return "lastrowid"
    if dialect_name == "mssql":
        return "output"
    if dialect_name == "oracle":
        return "rowid"
    if dialect_name == "sybase":
        return "identity"
    if insert_returning:
        return "returning"
    return "lastrowid"


def _driver_message(error: sa_exc.DBAPIError) -> str:
    """Return the message of the DBAPI exception wrapped by *error*."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


@final
class Statement:
    """A prepared SQL string bound to the executor that will run it.

    ``execute()`` returns the fetched rows for row-returning statements and
    ``True`` for everything else.  Any driver failure is raised as
    :class:`QueryError`; the message is also kept in ``error_message``.
    """

    __slots__ = ("_executor", "error_message", "sql")

    def __init__(self, executor: Executor, sql: str) -> None:
        self._executor = executor
        self.sql = sql
        self.error_message: str | None = None

    def execute(self, parameters: Mapping[str, Any] | None = None) -> list[Row] | bool:
        try:
            return self._executor._run(self.sql, parameters)  # noqa: SLF001
        except QueryError as e:
            self.error_message = str(e)
            raise

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.sql!r}>"


class Atomic:
    """Transaction scope over an :class:`Executor`.

    Works as a context manager and as a decorator.  Begins a transaction on
    enter, commits when the block succeeds and rolls back when it raises.
    A scope opened while another one is active becomes a SAVEPOINT.

    Example:
        >>> with executor.transaction():
        ...     QueryBuilder(executor, "users").insert({"name": "'alice'"})
    """

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def __enter__(self) -> Self:
        self.executor.begin_transaction()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.executor.commit()
        else:
            logger.warning("Rolling back transaction after %s", exc_type.__name__)
            self.executor.rollback()

    def __call__(self, func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with Atomic(self.executor):
                return func(*args, **kwargs)

        return wrapper


class Executor:
    """Statement executor on top of a SQLAlchemy connection.

    When built from an engine the executor owns its connection.  Outside of
    an explicit transaction every statement is committed as soon as it has
    run; inside ``begin_transaction()`` / ``transaction()`` statements are
    kept until ``commit()`` or ``rollback()``.

    A connection passed in by the caller is borrowed: the executor never
    commits or rolls back the caller's own transaction.  Statements run
    outside an explicit transaction are left for the caller to commit, and
    ``begin_transaction()`` opens a SAVEPOINT when the caller already has a
    transaction open.

    Args:
        bind: Engine to connect from, or an already open connection.
        setup_commands: Statements run once, right after connecting
            (e.g. ``SET SQL_MODE=ANSI_QUOTES``).
    """

    def __init__(self, bind: sa.Engine | sa.Connection, *, setup_commands: Sequence[str] = ()) -> None:
        if isinstance(bind, sa.Engine):
            self._connection = bind.connect()
            self._owns_connection = True
        else:
            self._connection = bind
            self._owns_connection = False

        self._transactions: list[sa.Transaction] = []
        self._last_insert_id: int | None = None
        self._last_rowid: Any = None

        for command in setup_commands:
            self._run(command, None)

    @property
    def connection(self) -> sa.Connection:
        return self._connection

    @property
    def dialect(self) -> sa.Dialect:
        return self._connection.dialect

    @property
    def dialect_name(self) -> str:
        return self._connection.dialect.name

    @property
    def key_strategy(self) -> str:
        """How generated keys are read back on the connected dialect, see :func:`generated_key_strategy`."""
        return generated_key_strategy(self.dialect_name, bool(getattr(self.dialect, "insert_returning", False)))

    def prepare(self, sql: str) -> Statement:
        return Statement(self, sql)

    def _autocommits(self) -> bool:
        return self._owns_connection and not self._transactions

    def _run(self, sql: str, parameters: Mapping[str, Any] | None) -> list[Row] | bool:
        logger.debug("Executing %s", sql)
        is_insert = sql.lstrip()[:6].upper() == "INSERT"
        if is_insert:
            self._last_insert_id = None
            self._last_rowid = None

        try:
            if parameters:
                result = self._connection.execute(sa.text(sql), dict(parameters))
            else:
                result = self._connection.exec_driver_sql(
                    sql, execution_options={"no_parameters": True}
                )

            if result.returns_rows:
                rows: list[Row] | bool = [dict(row) for row in result.mappings()]
            else:
                strategy = self.key_strategy if is_insert else None
                if strategy in ("lastrowid", "rowid"):
                    self._last_rowid = result.lastrowid
                    if strategy == "lastrowid" and result.lastrowid:
                        self._last_insert_id = int(result.lastrowid)
                rows = True
        except sa_exc.DBAPIError as e:
            if self._autocommits():
                self._connection.rollback()
            raise QueryError(_driver_message(e)) from e

        if self._autocommits():
            self._connection.commit()

        return rows

    def read_generated_key(self, table: str, column: str, result: list[Row] | bool) -> int | None:
        """Read the key the last INSERT generated for ``table.column``.

        *result* is what the INSERT returned; it holds the key on dialects
        that add ``RETURNING`` or ``OUTPUT INSERTED`` to the statement.  The
        key is also kept for :meth:`last_insert_id`.

        Raises:
            QueryError: If the dialect reports no generated key.
        """
        strategy = self.key_strategy
        if strategy in ("returning", "output"):
            rows = result if isinstance(result, list) else []
        elif strategy == "rowid":
            rows = []
            if self._last_rowid is not None:
                found = self._run(f"SELECT {column} FROM {table} WHERE ROWID = {self.quote(self._last_rowid)}", None)
                rows = found if isinstance(found, list) else []
        elif strategy == "identity":
            found = self._run(f"SELECT @@IDENTITY AS {column}", None)
            rows = found if isinstance(found, list) else []
        else:
            rows = [{column: self._last_rowid}] if self._last_rowid else []

        key = next(iter(rows[0].values()), None) if rows else None
        if key is None:
            raise QueryError(f"Unable to read the key generated for {table}.{column} on {self.dialect_name}.")

        self._last_insert_id = int(key) if isinstance(key, (int, float, Decimal)) else key
        return self._last_insert_id

    def last_insert_id(self) -> int | None:
        """Return the key generated by the last INSERT on this connection.

        ``None`` when the last INSERT generated no key, or when it was run
        without asking for one on a dialect that cannot report it afterwards.
        """
        return self._last_insert_id

    def quote(self, value: Any) -> str:
        """Render *value* as a SQL literal for the connected dialect.

        ``None`` becomes ``NULL``; values that are not strings or numbers are
        quoted through their string form.
        """
        if value is None:
            return "NULL"

        if not isinstance(value, _LITERAL_TYPES):
            value = str(value)

        return str(
            sa.literal(value).compile(dialect=self.dialect, compile_kwargs={"literal_binds": True})
        )

    def in_transaction(self) -> bool:
        return bool(self._transactions)

    def begin_transaction(self) -> None:
        if self._transactions:
            self._transactions.append(self._connection.begin_nested())
            return

        if self._connection.in_transaction():
            if not self._owns_connection:
                self._transactions.append(self._connection.begin_nested())
                return
            self._connection.commit()

        self._transactions.append(self._connection.begin())

    def commit(self) -> None:
        if not self._transactions:
            raise QueryError("There is no active transaction to commit.")

        self._transactions.pop().commit()

    def rollback(self) -> None:
        if not self._transactions:
            raise QueryError("There is no active transaction to roll back.")

        self._transactions.pop().rollback()

    def transaction(self) -> Atomic:
        """Return an :class:`Atomic` scope bound to this executor."""
        return Atomic(self)

    def close(self) -> None:
        while self._transactions:
            self._transactions.pop().rollback()

        if self._owns_connection:
            self._connection.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
