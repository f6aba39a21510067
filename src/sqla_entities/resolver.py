from __future__ import annotations

import logging
from collections.abc import Iterable, MutableMapping
from typing import TYPE_CHECKING, Any, TypeVar

from .columns import RelationField, RelationKind
from .core import JoinClause, QueryBuilder
from .datastructures import EntityCollection
from .entities import Entity, FetchMode, relation_field
from .exceptions import EntityError
from .registry import EntityRegistry
from .tools import get_table_name, resolve_mapped_property


if TYPE_CHECKING:
    from .executor import Executor, Row


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Entity)

IdentityMap = MutableMapping[tuple[type[Entity], tuple[Any, ...]], Entity]

_COUNTERPART_KIND = {
    RelationKind.MANY_TO_ONE: RelationKind.ONE_TO_MANY,
    RelationKind.ONE_TO_MANY: RelationKind.MANY_TO_ONE,
    RelationKind.ONE_TO_ONE: RelationKind.ONE_TO_ONE,
    RelationKind.MANY_TO_MANY: RelationKind.MANY_TO_MANY,
}


class RelationResolver:
    """Populates relation fields by issuing the secondary queries they need.

    * many-to-one: every row of the target whose ``referenced_column``
      equals the entity's ``column``; each row points back to the entity.
    * one-to-many: the first such row.
    * one-to-one: the first such row, pointing back to the entity.
    * many-to-many: the target rows joined through the cross table.

    The counterpart field on the target type must exist, otherwise
    :class:`EntityError` is raised.  Entities hydrated by the resolver are
    bound to it, so their own relations resolve lazily on first access.
    """

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def query(self, table: str) -> QueryBuilder:
        return QueryBuilder(self.executor, table)

    def _instantiate(self, target: type[T], row: Row, identity_map: IdentityMap | None) -> T:
        instance = target(row)
        identity = instance.identity()
        if identity_map is not None and identity is not None:
            existing = identity_map.get((target, identity))
            if existing is not None:
                return existing  # type: ignore[return-value]
            identity_map[(target, identity)] = instance

        instance.bind(self)
        return instance

    def _counterpart(self, entity: Entity, field: RelationField, target: type[Entity]) -> RelationField:
        relation = field.relation
        kind = _COUNTERPART_KIND[relation.kind]
        mapped = resolve_mapped_property(
            target,
            kind,
            relation.referenced_column,
            cross_table=relation.cross_table,
            origin=type(entity),
        )
        if mapped is None:
            on = (
                f"through the cross table {relation.cross_table!r}"
                if relation.kind is RelationKind.MANY_TO_MANY
                else f"on the column {relation.referenced_column!r}"
            )
            raise EntityError(
                f"Unable to find suitable mapped property for {type(entity).__name__}.{field.attr}: "
                f"{target.__name__} declares no {kind.value} field {on} pointing back to "
                f"{type(entity).__name__}."
            )

        return relation_field(target, mapped)

    def resolve(self, entity: Entity, field_name: str, *, identity_map: IdentityMap | None = None) -> Any:
        """Fetch the related entities of one relation field and assign them.

        Returns:
            The assigned value: an :class:`EntityCollection` for many-to-one
            and many-to-many fields, an entity or ``None`` otherwise.
        """
        field = relation_field(type(entity), field_name)
        relation = field.relation
        target = EntityRegistry().resolve_entity(relation.target)
        counterpart = self._counterpart(entity, field, target)
        logger.debug("Resolving %s.%s (%s)", type(entity).__name__, field_name, relation.kind.value)

        match relation.kind:
            case RelationKind.MANY_TO_ONE:
                value: Any = self._fetch_many_to_one(entity, field, target, counterpart, identity_map)
            case RelationKind.ONE_TO_MANY:
                value = self._fetch_one_to_many(entity, field, target, identity_map)
            case RelationKind.ONE_TO_ONE:
                value = self._fetch_one_to_one(entity, field, target, counterpart, identity_map)
            case RelationKind.MANY_TO_MANY:
                value = self._fetch_many_to_many(entity, field, target, counterpart, identity_map)

        setattr(entity, field_name, value)
        return getattr(entity, field_name)

    def _lookup_value(self, entity: Entity, field: RelationField) -> str | None:
        value = entity.get(field.relation.column)
        return None if value is None else self.executor.quote(value)

    def _fetch_many_to_one(
        self,
        entity: Entity,
        field: RelationField,
        target: type[Entity],
        counterpart: RelationField,
        identity_map: IdentityMap | None,
    ) -> EntityCollection[Entity]:
        value = self._lookup_value(entity, field)
        if value is None:
            return EntityCollection()

        table = get_table_name(target)
        rows = (
            self.query(table)
            .where({f"{table}.{field.relation.referenced_column}": value})
            .select(f"{table}.*")
        )

        items = []
        for row in rows:
            instance = self._instantiate(target, row, identity_map)
            if not counterpart.is_loaded(instance):
                counterpart.set_back_reference(instance, entity)
            items.append(instance)

        return EntityCollection(items)

    def _fetch_one_to_many(
        self,
        entity: Entity,
        field: RelationField,
        target: type[Entity],
        identity_map: IdentityMap | None,
    ) -> Entity | None:
        value = self._lookup_value(entity, field)
        if value is None:
            return None

        table = get_table_name(target)
        row = (
            self.query(table)
            .where({f"{table}.{field.relation.referenced_column}": value})
            .select_first(f"{table}.*")
        )

        return None if row is None else self._instantiate(target, row, identity_map)

    def _fetch_one_to_one(
        self,
        entity: Entity,
        field: RelationField,
        target: type[Entity],
        counterpart: RelationField,
        identity_map: IdentityMap | None,
    ) -> Entity | None:
        instance = self._fetch_one_to_many(entity, field, target, identity_map)
        if instance is not None and not counterpart.is_loaded(instance):
            counterpart.set_back_reference(instance, entity)

        return instance

    def _fetch_many_to_many(
        self,
        entity: Entity,
        field: RelationField,
        target: type[Entity],
        counterpart: RelationField,
        identity_map: IdentityMap | None,
    ) -> EntityCollection[Entity]:
        value = self._lookup_value(entity, field)
        if value is None:
            return EntityCollection()

        relation = field.relation
        mapped = counterpart.relation
        cross_table = relation.cross_table
        table = get_table_name(target)

        rows = (
            self.query(cross_table)  # type: ignore[arg-type]
            .where({f"{cross_table}.{relation.referenced_column}": value})
            .join(
                f"{table}.*",
                [
                    JoinClause(
                        "LEFT",
                        table,
                        f"{cross_table}.{mapped.referenced_column} = {table}.{mapped.column}",
                    )
                ],
            )
        )

        return EntityCollection(
            self._instantiate(target, row, identity_map)
            for row in rows
            if any(cell is not None for cell in row.values())
        )

    def cascade(self, entity: T, *, identity_map: IdentityMap | None = None) -> T:
        """Resolve every relation of an eagerly fetched entity, recursively.

        Fields are resolved in declaration order.  Related entities that are
        themselves eager are cascaded too; an identity map keyed by entity
        type and primary key makes sure each row is loaded once, which stops
        reference cycles.
        """
        self._cascade(entity, {} if identity_map is None else identity_map, set())
        return entity

    def _cascade(self, entity: Entity, identity_map: IdentityMap, visited: set[int]) -> None:
        if id(entity) in visited:
            return
        visited.add(id(entity))

        identity = entity.identity()
        if identity is not None:
            identity_map.setdefault((type(entity), identity), entity)

        metadata = entity.metadata()
        if metadata.fetch_mode is not FetchMode.EAGER:
            return

        for name in metadata.relation_columns:
            field = relation_field(type(entity), name)
            if not field.is_loaded(entity):
                self.resolve(entity, name, identity_map=identity_map)

            value = getattr(entity, name)
            related: Iterable[Entity] = value if isinstance(value, EntityCollection) else (value,)
            for item in related:
                if item is not None:
                    self._cascade(item, identity_map, visited)

    def load(self, entity_cls: type[T], rows: Iterable[Row]) -> EntityCollection[T]:
        """Hydrate *rows* as *entity_cls* instances, bound to this resolver and cascaded."""
        identity_map: IdentityMap = {}
        entities = []
        for row in rows:
            entity = self._instantiate(entity_cls, row, identity_map)
            entities.append(self.cascade(entity, identity_map=identity_map))

        return EntityCollection(entities)
