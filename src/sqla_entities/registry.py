from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, final

from .columns import Column, CompositeKeyField, RelationField, RelationKind, ScalarField
from .exceptions import EntityError


if TYPE_CHECKING:
    from .entities import Entity, FetchMode, IdGenerator, PrimaryKey, ValueTransformer, ValueValidator


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EntityMetadata:
    """Column and option description of one entity type.

    Built once, when the entity class is created, and stored in the
    :class:`EntityRegistry`.  ``columns`` maps field names to columns in
    declaration order (fields of base entities first).
    """

    entity: type[Entity]
    table: str
    fetch_mode: FetchMode
    columns: Mapping[str, Column]
    primary_key: str | None = None
    composite_key: str | None = None
    key_class: type[PrimaryKey] | None = None
    auto_increment: str | None = None
    id_generator: IdGenerator | None = None
    validator: ValueValidator | None = None
    transformer: ValueTransformer | None = None
    named_queries: Mapping[str, str] = field(default_factory=dict)

    @property
    def scalar_columns(self) -> Mapping[str, Column]:
        """Field name to column for every column stored in ``raw``.

        Composite-key components are listed as ``<key field>.<component>``.
        """
        columns: dict[str, Column] = {}
        for name, column in self.columns.items():
            if column.is_relation:
                continue
            if name == self.composite_key and self.key_class is not None:
                for attr, component in self.key_class.key_fields().items():
                    columns[f"{name}.{attr}"] = component
                continue
            columns[name] = column
        return columns

    @property
    def relation_columns(self) -> Mapping[str, Column]:
        return {name: column for name, column in self.columns.items() if column.is_relation}

    @property
    def has_primary_key(self) -> bool:
        return self.primary_key is not None or self.composite_key is not None


def _declared_fields(entity: type) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for klass in reversed(entity.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, (ScalarField, RelationField, CompositeKeyField)):
                fields[name] = value
    return fields


def build_metadata(
    entity: type[Entity],
    *,
    table: str,
    fetch_mode: FetchMode,
    id_generator: IdGenerator | None = None,
    validator: ValueValidator | None = None,
    transformer: ValueTransformer | None = None,
    named_queries: Mapping[str, str] | None = None,
) -> EntityMetadata:
    """Scan the declared fields of *entity* and validate them.

    Raises:
        EntityError: On more than one scalar primary key, a scalar primary key
            mixed with a composite key, or two many-to-many relations through
            the same cross table towards different targets.
    """
    columns: dict[str, Column] = {}
    primary_keys: list[str] = []
    composite_keys: list[str] = []
    key_class: type[PrimaryKey] | None = None
    auto_increment: str | None = None
    cross_tables: dict[str, tuple[str, str]] = {}

    for name, declared in _declared_fields(entity).items():
        column = declared.column
        columns[name] = column

        if isinstance(declared, CompositeKeyField):
            composite_keys.append(name)
            key_class = declared.key_class
            continue

        if column.is_primary_key:
            primary_keys.append(name)

        if auto_increment is None and column.is_auto_increment:
            auto_increment = name

        relation = column.relation
        if relation is not None and relation.kind is RelationKind.MANY_TO_MANY:
            assert relation.cross_table is not None
            seen = cross_tables.get(relation.cross_table)
            if seen is not None and seen[1] != relation.target_name:
                raise EntityError(
                    f"{entity.__name__} declares two many_to_many relations through the cross table "
                    f"{relation.cross_table!r} ({seen[0]!r} and {name!r}) towards different entities."
                )
            cross_tables[relation.cross_table] = (name, relation.target_name)

    if len(primary_keys) > 1:
        raise EntityError(
            f"{entity.__name__} declares more than one primary key column "
            f"({', '.join(primary_keys)}). Use a composite_key() field instead."
        )

    if len(composite_keys) > 1 or (composite_keys and primary_keys):
        raise EntityError(
            f"{entity.__name__} must declare either one primary key column or one composite key field."
        )

    return EntityMetadata(
        entity=entity,
        table=table,
        fetch_mode=fetch_mode,
        columns=MappingProxyType(columns),
        primary_key=primary_keys[0] if primary_keys else None,
        composite_key=composite_keys[0] if composite_keys else None,
        key_class=key_class,
        auto_increment=auto_increment,
        id_generator=id_generator,
        validator=validator,
        transformer=transformer,
        named_queries=MappingProxyType(dict(named_queries or {})),
    )


@final
class EntityRegistry:
    """Singleton registry of entity metadata.

    Entity classes register themselves when they are defined.  Relation
    targets declared by class name are resolved through this registry.
    """

    __instance: ClassVar[EntityRegistry | None] = None
    _by_type: dict[type[Entity], EntityMetadata]
    _by_name: dict[str, type[Entity]]

    def __new__(cls) -> EntityRegistry:
        if cls.__instance is None:
            instance = super().__new__(cls)
            instance._by_type = {}
            instance._by_name = {}
            cls.__instance = instance

        return cls.__instance

    def register(self, metadata: EntityMetadata) -> None:
        entity = metadata.entity
        previous = self._by_name.get(entity.__name__)
        if previous is not None and previous is not entity:
            logger.debug("Entity name %s now refers to %s", entity.__name__, entity.__qualname__)

        self._by_type[entity] = metadata
        self._by_name[entity.__name__] = entity

    def unregister(self, entity: type[Entity]) -> None:
        self._by_type.pop(entity, None)
        if self._by_name.get(entity.__name__) is entity:
            del self._by_name[entity.__name__]

    def get_metadata(self, entity: type[Entity]) -> EntityMetadata:
        """Return the metadata of *entity*.

        Raises:
            EntityError: If *entity* is not a registered entity class.
        """
        try:
            return self._by_type[entity]
        except (KeyError, TypeError):
            name = getattr(entity, "__name__", repr(entity))
            raise EntityError(
                f"{name} is not an entity. Declare it with `class {name}(Entity, table=...)`."
            ) from None

    def resolve_entity(self, target: type[Entity] | str) -> type[Entity]:
        """Return the entity class for a class or a registered class name."""
        if isinstance(target, str):
            try:
                return self._by_name[target]
            except KeyError:
                raise EntityError(f"Unknown entity {target!r}.") from None

        self.get_metadata(target)
        return target

    def __contains__(self, entity: object) -> bool:
        return entity in self._by_type

    @property
    def entities(self) -> Mapping[type[Entity], EntityMetadata]:
        return MappingProxyType(self._by_type)

    @classmethod
    def reset(cls) -> None:
        """Forget every registered entity (primarily for tests)."""
        from .tools import entities_cache_clear

        if cls.__instance is not None:
            cls.__instance._by_type.clear()
            cls.__instance._by_name.clear()
        entities_cache_clear()


def get_metadata(entity: type[Entity]) -> EntityMetadata:
    """Shorthand for ``EntityRegistry().get_metadata(entity)``."""
    return EntityRegistry().get_metadata(entity)
