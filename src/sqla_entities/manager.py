from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import exc as sa_exc

from .core import QueryBuilder
from .exceptions import EntityError, QueryError, ValueValidatorError
from .tools import entity_key_conditions, get_table_name, key_conditions


if TYPE_CHECKING:
    from .entities import Entity, IdGenerator, ValueValidator
    from .executor import Executor, Row


logger = logging.getLogger(__name__)


@contextmanager
def _write_scope(executor: Executor) -> Iterator[None]:
    """Run a write inside a transaction, reporting failures as :class:`EntityError`."""
    try:
        with executor.transaction():
            yield
    except (QueryError, sa_exc.SQLAlchemyError) as e:
        raise EntityError(str(e)) from e


class EntityManager:
    """Translates entity state into INSERT, UPDATE, DELETE and SELECT statements.

    Every write runs in its own transaction and is rolled back when any
    statement fails; the failure is re-raised as :class:`EntityError`.
    Values are validated before the transaction is opened, so a rejected
    value never leads to a partial write.
    """

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def query(self, table: str | None = None) -> QueryBuilder:
        """Return a fresh :class:`QueryBuilder` bound to this manager's executor."""
        return QueryBuilder(self.executor, table)

    def find(self, entity_cls: type[Entity], id: Any) -> Row | None:  # noqa: A002
        """Fetch the raw row of *entity_cls* identified by *id*.

        Args:
            entity_cls: Entity class to look up.
            id: Scalar primary key value, or a :class:`PrimaryKey` instance
                for entities with a composite key.

        Returns:
            The row as a ``dict``, or ``None`` when no row matches.
        """
        where = key_conditions(entity_cls, id, self.executor.quote)
        return self.query(get_table_name(entity_cls)).where(where).select_first()

    def _column_values(self, entity: Entity, validator: ValueValidator | None) -> dict[str, Any]:
        metadata = entity.metadata()
        values: dict[str, Any] = {}
        for field, column in metadata.scalar_columns.items():
            value = entity.get(column.name)
            if validator is not None and not validator.validate(metadata.table, column.name, value):
                raise ValueValidatorError(field)
            values[column.name] = value

        return values

    def persist(
        self,
        entity: Entity,
        *,
        id_generator: IdGenerator | None = None,
        validator: ValueValidator | None = None,
    ) -> None:
        """Insert *entity* as a new row.

        A primary key that is not auto-incremented and holds no value is
        filled by the id generator (the argument, or the one declared on the
        entity class).  After the insert, the generated auto-increment value
        is written back to the entity.

        Raises:
            EntityError: If the primary key cannot be generated or the insert fails.
            ValueValidatorError: If the validator rejects a value.
        """
        metadata = entity.metadata()
        validator = validator or metadata.validator
        primary_key = metadata.primary_key
        auto_increment = metadata.auto_increment
        generated = False

        if primary_key is not None and primary_key != auto_increment:
            if entity.get(metadata.columns[primary_key].name) is None:
                generator = id_generator or metadata.id_generator
                if generator is None:
                    raise EntityError(
                        f"Cannot persist {entity!r}: the primary key {primary_key!r} has no value and is "
                        "not auto-incremented. Give it a value, mark the column with auto_increment=True, "
                        "or declare an id_generator for the entity."
                    )
                setattr(entity, primary_key, generator.generate(entity))
                generated = True

        try:
            values = self._column_values(entity, validator)
        except ValueValidatorError:
            if generated:
                setattr(entity, primary_key, None)  # type: ignore[arg-type]
            raise

        auto_column = metadata.columns[auto_increment].name if auto_increment is not None else None
        fill_auto_increment = auto_column is not None and values.get(auto_column) is None
        if fill_auto_increment:
            values.pop(auto_column)  # type: ignore[arg-type]

        quoted = {name: self.executor.quote(value) for name, value in values.items()}

        returning = auto_column if fill_auto_increment else None
        with _write_scope(self.executor):
            self.query(metadata.table).insert(quoted, returning=returning)

        if fill_auto_increment:
            entity.set(auto_column, self.executor.last_insert_id())  # type: ignore[arg-type]

        logger.debug("Persisted %r", entity)

    def merge(self, entity: Entity, *, validator: ValueValidator | None = None) -> None:
        """Update the row of *entity* with its current values.

        Raises:
            EntityError: If the entity has no primary key value or the update fails.
            ValueValidatorError: If the validator rejects a value.
        """
        metadata = entity.metadata()
        where = entity_key_conditions(entity, self.executor.quote)
        values = self._column_values(entity, validator or metadata.validator)
        quoted = {name: self.executor.quote(value) for name, value in values.items()}

        with _write_scope(self.executor):
            self.query(metadata.table).where(where).update(quoted)

        logger.debug("Merged %r", entity)

    def delete(self, entity: Entity) -> None:
        """Delete the row of *entity* and clear its primary key.

        Raises:
            EntityError: If the entity has no primary key value or the delete fails.
        """
        metadata = entity.metadata()
        where = entity_key_conditions(entity, self.executor.quote)

        with _write_scope(self.executor):
            self.query(metadata.table).where(where).delete()

        logger.debug("Deleted %r", entity)

        if metadata.composite_key is not None:
            setattr(entity, metadata.composite_key, None)
        elif metadata.primary_key is not None:
            entity.set(metadata.columns[metadata.primary_key].name, None)
