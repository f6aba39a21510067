from __future__ import annotations

from collections.abc import Callable, Mapping
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from .columns import Column, RelationKind
from .exceptions import EntityError
from .registry import EntityRegistry


if TYPE_CHECKING:
    from .entities import Entity, PrimaryKey


@lru_cache
def _get_table_name(entity: type[Entity]) -> str:
    """Return the table name of *entity* (cached)."""
    return EntityRegistry().get_metadata(entity).table


@lru_cache
def _get_primary_key(entity: type[Entity]) -> Column | None:
    """Return the scalar primary key column of *entity* (cached)."""
    metadata = EntityRegistry().get_metadata(entity)
    if metadata.primary_key is None:
        return None

    return metadata.columns[metadata.primary_key]


def get_table_name(entity: type[Entity]) -> str:
    """Get the storage table of an entity class.

    Raises:
        EntityError: If *entity* is not a registered entity.
    """
    return _get_table_name(entity)


def get_primary_key(entity: type[Entity]) -> Column | None:
    """Get the scalar primary key column of an entity class, if it has one."""
    return _get_primary_key(entity)


@lru_cache(maxsize=1028)
def _resolve_mapped_property(
    target: type[Entity],
    kind: RelationKind,
    column: str,
    cross_table: str | None,
    origin: str | None,
) -> str | None:
    metadata = EntityRegistry().get_metadata(target)
    for name, candidate in metadata.columns.items():
        relation = candidate.relation
        if relation is None or relation.kind is not kind:
            continue

        if origin is not None and relation.target_name != origin:
            continue

        if kind is RelationKind.MANY_TO_MANY:
            if relation.cross_table == cross_table:
                return name
            continue

        if candidate.name == column:
            return name

    return None


def resolve_mapped_property(
    target: type[Entity],
    kind: RelationKind,
    column: str,
    *,
    cross_table: str | None = None,
    origin: type[Entity] | None = None,
) -> str | None:
    """Find the counterpart field of a relation on *target*.

    Only metadata is inspected, no query is issued.  For one-to-one,
    one-to-many and many-to-one the counterpart is the field of *kind*
    whose column equals *column*; for many-to-many it is the field of
    *kind* declared through the same *cross_table*.  When *origin* is
    given, only fields targeting *origin* are considered.

    Returns:
        The field name, or ``None`` when *target* declares no such field.
    """
    return _resolve_mapped_property(
        target,
        kind,
        column,
        cross_table,
        origin.__name__ if origin is not None else None,
    )


def key_conditions(
    entity_cls: type[Entity],
    value: Any,
    quote: Callable[[Any], str],
) -> dict[str, str]:
    """Build the ``column -> quoted value`` WHERE mapping identifying one row.

    *value* is either a scalar primary key value or a :class:`PrimaryKey`
    instance whose components are all used.

    Raises:
        EntityError: If the entity declares no primary key.
    """
    from .entities import PrimaryKey

    if isinstance(value, PrimaryKey):
        return {name: quote(component) for name, component in value.components().items()}

    metadata = EntityRegistry().get_metadata(entity_cls)
    if metadata.key_class is not None and isinstance(value, Mapping):
        return {column.name: quote(value.get(column.name)) for column in metadata.key_class.key_columns()}

    primary_key = get_primary_key(entity_cls)
    if primary_key is None:
        raise EntityError(f"{entity_cls.__name__} has no primary key column to look up rows with.")

    return {primary_key.name: quote(value)}


def entity_key_conditions(entity: Entity, quote: Callable[[Any], str]) -> dict[str, str]:
    """Build the WHERE mapping identifying the row of a loaded entity."""
    metadata = entity.metadata()
    if metadata.composite_key is not None:
        key: PrimaryKey | None = getattr(entity, metadata.composite_key)
        if key is None:
            raise EntityError(f"The composite key of {entity!r} has no value.")
        return key_conditions(type(entity), key, quote)

    if metadata.primary_key is None:
        raise EntityError(f"{type(entity).__name__} has no primary key, it cannot be identified.")

    primary_key = metadata.columns[metadata.primary_key]
    value = entity.get(primary_key.name)
    if value is None:
        raise EntityError(f"The primary key {metadata.primary_key!r} of {entity!r} has no value.")

    return {primary_key.name: quote(value)}


def entities_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    return {
        fn.__name__: fn.cache_info()
        for fn in (_resolve_mapped_property, _get_primary_key, _get_table_name)
    }


def entities_cache_clear() -> None:
    """Clear all internal LRU caches."""
    for fn in (_resolve_mapped_property, _get_primary_key, _get_table_name):
        fn.cache_clear()
