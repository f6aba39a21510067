from __future__ import annotations

import enum
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .datastructures import EntityCollection, as_collection
from .exceptions import EntityError


if TYPE_CHECKING:
    from .entities import Entity, PrimaryKey


class RelationKind(str, enum.Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"

    @property
    def is_collection(self) -> bool:
        """Whether a field of this kind holds several entities."""
        return self in (RelationKind.MANY_TO_ONE, RelationKind.MANY_TO_MANY)


@dataclass(frozen=True, slots=True)
class Relation:
    """Join parameters of a relation field.

    Attributes:
        kind: Relation kind.
        target: Related entity class, or its registered class name.
        column: Column of the declaring entity whose value drives the lookup.
        referenced_column: Column of the related table (of the cross table
            for many-to-many) compared with ``column``.
        cross_table: Intermediate table, many-to-many only.
    """

    kind: RelationKind
    target: type[Entity] | str
    column: str
    referenced_column: str
    cross_table: str | None = None

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__name__


@dataclass(frozen=True, slots=True)
class Column:
    """Description of one persisted attribute of an entity.

    Scalar columns map a field onto a storage column.  Relation columns carry
    a :class:`Relation` and never hold a raw cell value.
    """

    name: str
    type: str = "string"
    size: tuple[int | None, int | None] | None = None
    default: Any = None
    is_primary_key: bool = False
    is_unique_key: bool = False
    is_auto_increment: bool = False
    relation: Relation | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.is_primary_key and not self.is_unique_key:
            object.__setattr__(self, "is_unique_key", True)

    @property
    def is_relation(self) -> bool:
        return self.relation is not None

    @property
    def relation_kind(self) -> RelationKind | None:
        return self.relation.kind if self.relation is not None else None

    @property
    def is_one_to_one(self) -> bool:
        return self.relation_kind is RelationKind.ONE_TO_ONE

    @property
    def is_one_to_many(self) -> bool:
        return self.relation_kind is RelationKind.ONE_TO_MANY

    @property
    def is_many_to_one(self) -> bool:
        return self.relation_kind is RelationKind.MANY_TO_ONE

    @property
    def is_many_to_many(self) -> bool:
        return self.relation_kind is RelationKind.MANY_TO_MANY


class Field:
    """Base descriptor for declared entity fields."""

    __slots__ = ("attr", "column")

    def __init__(self, column: Column) -> None:
        self.column = column
        self.attr = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.attr = name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.attr}={self.column.name!r}>"


class ScalarField(Field):
    """Field stored in the row shadow (``raw``) under its column name."""

    __slots__ = ()

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self

        return instance._get_field_value(self.column)  # noqa: SLF001

    def __set__(self, instance: Any, value: Any) -> None:
        instance._set_field_value(self.column, value)  # noqa: SLF001


class RelationField(Field):
    """Field holding related entities.

    An unpopulated field is resolved on first access when the entity is
    bound to a resolver.  Back-references assigned by the resolver are kept
    as weak references.
    """

    __slots__ = ()

    @property
    def relation(self) -> Relation:
        assert self.column.relation is not None
        return self.column.relation

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self

        try:
            value = instance.__dict__[self.attr]
        except KeyError:
            return instance._load_relation(self.attr)  # noqa: SLF001

        return value() if isinstance(value, weakref.ref) else value

    def __set__(self, instance: Any, value: Any) -> None:
        if self.relation.kind.is_collection:
            value = as_collection(value)

        instance.__dict__[self.attr] = value

    def __delete__(self, instance: Any) -> None:
        instance.__dict__.pop(self.attr, None)

    def set_back_reference(self, instance: Any, origin: Entity) -> None:
        """Point *instance* back to *origin* without keeping *origin* alive."""
        instance.__dict__[self.attr] = weakref.ref(origin)

    def is_loaded(self, instance: Any) -> bool:
        return self.attr in instance.__dict__

    def empty(self) -> EntityCollection[Any] | None:
        return EntityCollection() if self.relation.kind.is_collection else None


class CompositeKeyField(Field):
    """Field exposing several primary-key columns as one :class:`PrimaryKey` value."""

    __slots__ = ("key_class",)

    def __init__(self, key_class: type[PrimaryKey]) -> None:
        super().__init__(Column(name=key_class.__name__, type="composite", is_primary_key=True))
        self.key_class = key_class

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self

        values = {column.name: instance.raw.get(column.name) for column in self.key_class.key_columns()}
        if all(value is None for value in values.values()):
            return None

        return self.key_class.from_raw(values)

    def __set__(self, instance: Any, value: PrimaryKey | None) -> None:
        for column in self.key_class.key_columns():
            instance.raw[column.name] = None if value is None else value.raw.get(column.name)


def column(
    name: str,
    type: str = "string",  # noqa: A002
    *,
    size: tuple[int | None, int | None] | None = None,
    default: Any = None,
    primary_key: bool = False,
    unique: bool = False,
    auto_increment: bool = False,
) -> Any:
    """Declare a scalar column.

    Example:
        >>> class User(Entity, table="users"):
        ...     id = column("id", "int", primary_key=True, auto_increment=True)
        ...     name = column("name", "varchar", size=(1, 100))
    """
    return ScalarField(
        Column(
            name=name,
            type=type,
            size=size,
            default=default,
            is_primary_key=primary_key,
            is_unique_key=unique,
            is_auto_increment=auto_increment,
        )
    )


def _relation(
    kind: RelationKind,
    target: type[Entity] | str,
    column: str,
    referenced_column: str,
    cross_table: str | None = None,
) -> Any:
    if not column or not referenced_column:
        raise EntityError(f"A {kind.value} relation requires both a column and a referenced column.")

    if kind is RelationKind.MANY_TO_MANY and not cross_table:
        raise EntityError("A many_to_many relation requires a cross table.")

    relation = Relation(
        kind=kind,
        target=target,
        column=column,
        referenced_column=referenced_column,
        cross_table=cross_table,
    )
    return RelationField(Column(name=column, type=kind.value, relation=relation))


def one_to_one(target: type[Entity] | str, *, column: str, referenced_column: str) -> Any:
    """Declare a field holding the single entity whose ``referenced_column`` equals ``column``."""
    return _relation(RelationKind.ONE_TO_ONE, target, column, referenced_column)


def one_to_many(target: type[Entity] | str, *, column: str, referenced_column: str) -> Any:
    """Declare the single-entity side of a relation (counterpart of :func:`many_to_one`)."""
    return _relation(RelationKind.ONE_TO_MANY, target, column, referenced_column)


def many_to_one(target: type[Entity] | str, *, column: str, referenced_column: str) -> Any:
    """Declare the collection side of a relation (counterpart of :func:`one_to_many`)."""
    return _relation(RelationKind.MANY_TO_ONE, target, column, referenced_column)


def many_to_many(
    target: type[Entity] | str,
    *,
    cross_table: str,
    column: str,
    referenced_column: str,
) -> Any:
    """Declare a collection joined through ``cross_table``.

    ``column`` is read on the declaring entity and matched against the
    ``referenced_column`` of the cross table.
    """
    return _relation(RelationKind.MANY_TO_MANY, target, column, referenced_column, cross_table)


def composite_key(key_class: type[PrimaryKey]) -> Any:
    """Declare a multi-column primary key described by a :class:`PrimaryKey` subclass."""
    return CompositeKeyField(key_class)
