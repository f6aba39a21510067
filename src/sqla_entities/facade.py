from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from sqlalchemy import exc as sa_exc

from .datastructures import EntityCollection
from .entities import Entity, GenericEntity, IdGenerator, ValueValidator
from .exceptions import EntityError, FacadeError, QueryError
from .executor import Executor, Row
from .manager import EntityManager, _write_scope
from .persistence import PersistenceUnit, create_executor
from .resolver import RelationResolver
from .tools import get_table_name


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Entity)

OrderBy = str | tuple[str, str]


@runtime_checkable
class FacadeListener(Protocol):
    """Hooks called around facade writes.

    A ``before_*`` hook returning ``False`` cancels the operation.
    """

    def before_create(self, entity: Any) -> bool: ...

    def on_create(self, entity: Any) -> None: ...

    def before_edit(self, entity: Any) -> bool: ...

    def on_edit(self, entity: Any) -> None: ...

    def before_delete(self, entity: Any) -> bool: ...

    def on_delete(self, entity: Any) -> None: ...


class BaseFacadeListener:
    """Listener accepting every operation and doing nothing; override what you need."""

    def before_create(self, entity: Any) -> bool:
        return True

    def on_create(self, entity: Any) -> None:
        pass

    def before_edit(self, entity: Any) -> bool:
        return True

    def on_edit(self, entity: Any) -> None:
        pass

    def before_delete(self, entity: Any) -> bool:
        return True

    def on_delete(self, entity: Any) -> None:
        pass


def _as_executor(executor_or_unit: Executor | PersistenceUnit | str) -> tuple[Executor, bool]:
    if isinstance(executor_or_unit, Executor):
        return executor_or_unit, False

    return create_executor(executor_or_unit), True


class _FacadeBase:
    """Executor ownership and listener dispatch shared by both facades."""

    def __init__(
        self,
        executor_or_unit: Executor | PersistenceUnit | str,
        listener: FacadeListener | None = None,
    ) -> None:
        self.executor, self._owns_executor = _as_executor(executor_or_unit)
        self.listener = listener

    def _allowed(self, hook: str, entity: Any) -> bool:
        if self.listener is None:
            return True

        if getattr(self.listener, f"before_{hook}")(entity) is False:
            logger.info("Listener vetoed %s of %r", hook, entity)
            return False

        return True

    def _notify(self, hook: str, entity: Any) -> None:
        if self.listener is not None:
            getattr(self.listener, f"on_{hook}")(entity)

    def close(self) -> None:
        """Close the executor when the facade created it from a persistence unit."""
        if self._owns_executor:
            self.executor.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class Facade(_FacadeBase, Generic[T]):
    """Typed entry point for one entity class.

    Reads hydrate entity instances bound to the facade's resolver; eager
    entities are returned with their relations loaded, lazy ones resolve
    them on first access.

    Args:
        entity_cls: The entity class served by this facade.
        executor_or_unit: An :class:`Executor`, a :class:`PersistenceUnit`,
            or the key of a registered persistence unit.
        id_generator: Overrides the class-level id generator on create.
        validator: Overrides the class-level value validator on writes.
        listener: Optional :class:`FacadeListener`.

    Raises:
        FacadeError: If *entity_cls* is not an :class:`Entity` subclass.
        EntityError: If *entity_cls* declares no table.

    Example:
        >>> users = Facade(User, executor)
        >>> alice = User(name="alice")
        >>> users.create(alice)
        True
        >>> users.find(alice.id).name
        'alice'
    """

    def __init__(
        self,
        entity_cls: type[T],
        executor_or_unit: Executor | PersistenceUnit | str,
        *,
        id_generator: IdGenerator | None = None,
        validator: ValueValidator | None = None,
        listener: FacadeListener | None = None,
    ) -> None:
        if not (isinstance(entity_cls, type) and issubclass(entity_cls, Entity)):
            raise FacadeError("Unable to create a facade. The entity class seems to be invalid.")

        if entity_cls.__entity_metadata__ is None:
            raise EntityError(f"Cannot create a facade for {entity_cls.__name__}: it has no table declaration.")

        super().__init__(executor_or_unit, listener)
        self.entity_cls = entity_cls
        self.id_generator = id_generator
        self.validator = validator
        self._manager = EntityManager(self.executor)
        self._resolver = RelationResolver(self.executor)

    @property
    def entity_manager(self) -> EntityManager:
        return self._manager

    @property
    def resolver(self) -> RelationResolver:
        return self._resolver

    @property
    def table(self) -> str:
        return get_table_name(self.entity_cls)

    def _check(self, entity: Any, action: str) -> None:
        if not isinstance(entity, self.entity_cls):
            raise FacadeError(
                f"Cannot {action} entity. The type {type(entity).__name__} is not valid for the "
                f"{self.entity_cls.__name__} facade."
            )

    # writes

    def create(self, entity: T) -> bool:
        """Insert *entity*; returns ``False`` when the listener cancels."""
        self._check(entity, "create")
        if not self._allowed("create", entity):
            return False

        self._manager.persist(entity, id_generator=self.id_generator, validator=self.validator)
        entity.bind(self._resolver)
        self._notify("create", entity)
        return True

    def edit(self, entity: T) -> bool:
        """Update the row of *entity*; returns ``False`` when the listener cancels."""
        self._check(entity, "edit")
        if not self._allowed("edit", entity):
            return False

        self._manager.merge(entity, validator=self.validator)
        self._notify("edit", entity)
        return True

    def delete(self, entity: T) -> bool:
        """Delete the row of *entity*; returns ``False`` when the listener cancels."""
        self._check(entity, "delete")
        if not self._allowed("delete", entity):
            return False

        self._manager.delete(entity)
        self._notify("delete", entity)
        return True

    # reads

    def _hydrate(self, rows: list[Row]) -> EntityCollection[T]:
        return self._resolver.load(self.entity_cls, rows)

    def find(self, id: Any) -> T | None:  # noqa: A002
        """Return the entity identified by *id* (scalar or :class:`PrimaryKey`), or ``None``."""
        row = self._manager.find(self.entity_cls, id)
        if row is None:
            return None

        return self._hydrate([row]).first()

    def find_all(self) -> EntityCollection[T]:
        return self._hydrate(self._manager.query(self.table).select())

    def find_range(self, start: int, length: int) -> EntityCollection[T]:
        """Return at most *length* entities, skipping the first *start* rows."""
        return self._hydrate(self._manager.query(self.table).limit(start, length).select())

    def find_by(self, conditions: Mapping[str, Any], order: OrderBy | None = None) -> EntityCollection[T]:
        """Return the entities whose columns match *conditions*.

        Values are quoted; an ``(operator, value)`` tuple selects another
        comparison than equality.

        Example:
            >>> posts.find_by({"author_id": 1, "views": (">=", 10)}, order=("views", "DESC"))
        """
        where: dict[str | int, str] = {}
        for column, value in conditions.items():
            if isinstance(value, tuple):
                operator, operand = value
                where[column] = f"{operator} {self.executor.quote(operand)}"
            else:
                where[column] = self.executor.quote(value)

        builder = self._manager.query(self.table)
        if where:
            builder.where(where)
        if order is not None:
            column, mode = (order, "ASC") if isinstance(order, str) else order
            builder.order(column, mode)

        return self._hydrate(builder.select())

    def count(self) -> int:
        return int(self._manager.query(self.table).count())  # type: ignore[arg-type]

    def resolve(self, entity: T, field: str) -> Any:
        """Load the relation *field* of *entity* now, replacing any loaded value."""
        self._check(entity, "resolve")
        return self._resolver.resolve(entity, field)

    def get_named_query(self, name: str) -> NamedQuery[T]:
        """Return the named query *name* declared on the entity class.

        Raises:
            FacadeError: If the class declares no named query called *name*.
        """
        queries = self.entity_cls.metadata().named_queries
        if not queries:
            raise FacadeError(f"The {self.entity_cls.__name__} entity declares no named query.")

        try:
            sql = queries[name]
        except KeyError:
            raise FacadeError(
                f"The {self.entity_cls.__name__} entity has no named query with the name {name!r}."
            ) from None

        return NamedQuery(self, name, sql)


class NamedQuery(Generic[T]):
    """A parameterized SQL statement declared on an entity class.

    Parameters use the ``:name`` placeholder syntax and are bound by the
    driver, never interpolated into the SQL text.

    Example:
        >>> query = users.get_named_query("by_name").set_param("name", "alice")
        >>> query.run()
        True
        >>> query.get_first_result()
        <User 1>
    """

    def __init__(self, facade: Facade[T], name: str, sql: str) -> None:
        self.facade = facade
        self.name = name
        self.sql = sql
        self.parameters: dict[str, Any] = {}
        self._rows: list[Row] | None = None

    def set_param(self, name: str, value: Any) -> NamedQuery[T]:
        self.parameters[name] = value
        return self

    def run(self) -> bool:
        """Execute the query.

        Raises:
            QueryError: If the statement fails.
        """
        try:
            result = self.facade.executor.prepare(self.sql).execute(self.parameters)
        except sa_exc.SQLAlchemyError as e:
            raise QueryError(f"The named query {self.name!r} failed: {e}") from e

        self._rows = result if isinstance(result, list) else []
        return True

    def get_results(self) -> EntityCollection[T]:
        """Return the rows of the last run as entities.

        Raises:
            QueryError: If the query has not run yet.
        """
        if self._rows is None:
            raise QueryError(f"Cannot get results, the named query {self.name!r} has not run.")

        return self.facade._hydrate(self._rows)  # noqa: SLF001

    def get_first_result(self) -> T | None:
        return self.get_results().first()


class GenericFacade(_FacadeBase):
    """Facade for :class:`GenericEntity` rows of arbitrary tables.

    Writes run in a transaction; any failure is rolled back and raised as
    :class:`EntityError`.  The typed look-ups of :class:`Facade` are
    replaced by ``*_generic`` variants taking the table (and primary key
    column) explicitly.
    """

    def __init__(
        self,
        executor_or_unit: Executor | PersistenceUnit | str,
        *,
        listener: FacadeListener | None = None,
    ) -> None:
        super().__init__(executor_or_unit, listener)
        self._manager = EntityManager(self.executor)

    @property
    def entity_manager(self) -> EntityManager:
        return self._manager

    def _check(self, entity: Any) -> None:
        if not isinstance(entity, GenericEntity):
            raise FacadeError("Only GenericEntity instances can be used with GenericFacade.")

    def _quoted(self, entity: GenericEntity) -> dict[str, str]:
        return {column: self.executor.quote(value) for column, value in entity.data.items()}

    def _key(self, entity: GenericEntity) -> dict[str | int, str]:
        return {entity.pk: self.executor.quote(entity.get(entity.pk))}

    def create(self, entity: GenericEntity) -> bool:
        self._check(entity)
        if not self._allowed("create", entity):
            return False

        generated = entity.get(entity.pk) is None
        values = self._quoted(entity)
        if generated:
            values.pop(entity.pk, None)

        with _write_scope(self.executor):
            self._manager.query(entity.name).insert(values, returning=entity.pk if generated else None)

        if generated:
            entity.set(entity.pk, self.executor.last_insert_id())
        self._notify("create", entity)
        return True

    def edit(self, entity: GenericEntity) -> bool:
        self._check(entity)
        if not self._allowed("edit", entity):
            return False

        with _write_scope(self.executor):
            self._manager.query(entity.name).where(self._key(entity)).update(self._quoted(entity))

        self._notify("edit", entity)
        return True

    def delete(self, entity: GenericEntity) -> bool:
        self._check(entity)
        if not self._allowed("delete", entity):
            return False

        with _write_scope(self.executor):
            self._manager.query(entity.name).where(self._key(entity)).delete()

        self._notify("delete", entity)
        return True

    def find(self, id: Any) -> Any:  # noqa: A002
        raise FacadeError('The "find" method is unavailable in GenericFacade, use "find_generic" instead.')

    def find_all(self) -> Any:
        raise FacadeError('The "find_all" method is unavailable in GenericFacade, use "find_all_generic" instead.')

    def find_range(self, start: int, length: int) -> Any:
        raise FacadeError(
            'The "find_range" method is unavailable in GenericFacade, use "find_range_generic" instead.'
        )

    def count(self) -> Any:
        raise FacadeError('The "count" method is unavailable in GenericFacade, use "count_generic" instead.')

    def find_generic(self, table: str, pk: str, id: Any) -> GenericEntity | None:  # noqa: A002
        row = self._manager.query(table).where({pk: self.executor.quote(id)}).select_first()
        return None if row is None else GenericEntity(table, pk, row)

    def find_all_generic(self, table: str, pk: str) -> EntityCollection[GenericEntity]:
        return EntityCollection(GenericEntity(table, pk, row) for row in self._manager.query(table).select())

    def find_range_generic(self, table: str, pk: str, start: int, length: int) -> EntityCollection[GenericEntity]:
        rows = self._manager.query(table).limit(start, length).select()
        return EntityCollection(GenericEntity(table, pk, row) for row in rows)

    def count_generic(self, table: str) -> int:
        return int(self._manager.query(table).count())  # type: ignore[arg-type]
