from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from .columns import Column, CompositeKeyField, RelationField, ScalarField
from .exceptions import EntityError
from .registry import EntityMetadata, EntityRegistry, build_metadata


if TYPE_CHECKING:
    from .resolver import RelationResolver


class FetchMode(enum.IntEnum):
    EAGER = 1
    LAZY = 2


@runtime_checkable
class IdGenerator(Protocol):
    """Generates primary key values for entities without auto-increment."""

    def generate(self, entity: Entity) -> Any: ...


@runtime_checkable
class ValueValidator(Protocol):
    """Accepts or rejects the value about to be written into a column."""

    def validate(self, table: str, column: str, value: Any) -> bool: ...


@runtime_checkable
class ValueTransformer(Protocol):
    """Converts values between their database and their entity representation."""

    def to_database_value(self, table: str, column: str, value: Any) -> Any: ...

    def to_entity_value(self, table: str, column: str, value: Any) -> Any: ...


class PrimaryKey:
    """Composite primary key made of several ``column(...)`` fields.

    Example:
        >>> class OrderLineKey(PrimaryKey):
        ...     order_id = column("order_id", "int")
        ...     line_no = column("line_no", "int")
        >>> class OrderLine(Entity, table="order_lines"):
        ...     key = composite_key(OrderLineKey)
        >>> OrderLine(key=OrderLineKey(order_id=1, line_no=2)).get("line_no")
        2
    """

    __key_fields__: ClassVar[Mapping[str, Column]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        fields: dict[str, Column] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, ScalarField):
                    fields[name] = Column(
                        name=value.column.name,
                        type=value.column.type,
                        size=value.column.size,
                        default=value.column.default,
                        is_primary_key=True,
                    )
        if not fields:
            raise EntityError(f"The primary key {cls.__name__} declares no column.")
        cls.__key_fields__ = fields

    def __init__(self, **values: Any) -> None:
        self.raw: dict[str, Any] = {column.name: None for column in self.key_columns()}
        for name, value in values.items():
            if name not in self.__key_fields__:
                raise EntityError(f"{type(self).__name__} has no key field {name!r}.")
            setattr(self, name, value)

    @classmethod
    def key_fields(cls) -> Mapping[str, Column]:
        return cls.__key_fields__

    @classmethod
    def key_columns(cls) -> tuple[Column, ...]:
        return tuple(cls.__key_fields__.values())

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> PrimaryKey:
        key = cls()
        key.raw.update({column.name: raw.get(column.name) for column in cls.key_columns()})
        return key

    def components(self) -> dict[str, Any]:
        """Storage column name to value of every key component."""
        return dict(self.raw)

    def _get_field_value(self, column: Column) -> Any:
        return self.raw.get(column.name)

    def _set_field_value(self, column: Column, value: Any) -> None:
        self.raw[column.name] = value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PrimaryKey):
            return type(self) is type(other) and self.raw == other.raw

        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self), tuple(self.raw.items())))

    def __repr__(self) -> str:
        values = ", ".join(f"{name}={value!r}" for name, value in self.raw.items())
        return f"{type(self).__name__}({values})"


class Entity:
    """Base class for mapped entities.

    A subclass becomes an entity by passing ``table=`` in its class
    statement; its fields are declared with :func:`column` and the relation
    factories.  The class keywords are:

    * ``table``: storage table (required to instantiate the class).
    * ``fetch_mode``: :attr:`FetchMode.EAGER` resolves every relation when a
      facade loads the entity; :attr:`FetchMode.LAZY` (default) resolves a
      relation the first time it is read.
    * ``id_generator``, ``validator``, ``transformer``: plug-in objects
      implementing :class:`IdGenerator`, :class:`ValueValidator` and
      :class:`ValueTransformer`.
    * ``named_queries``: mapping of query name to SQL with ``:param``
      placeholders.

    Instances keep the last known row in ``raw`` (storage column name to
    value); scalar fields read and write that mapping.

    Example:
        >>> class User(Entity, table="users", fetch_mode=FetchMode.EAGER):
        ...     id = column("id", "int", primary_key=True, auto_increment=True)
        ...     name = column("name", "varchar")
        ...     posts = many_to_one("Post", column="id", referenced_column="author_id")
        >>> user = User({"id": 1, "name": "alice"})
        >>> user.name, user.get("name")
        ('alice', 'alice')
    """

    __entity_metadata__: ClassVar[EntityMetadata | None] = None

    def __init_subclass__(
        cls,
        *,
        table: str | None = None,
        fetch_mode: FetchMode = FetchMode.LAZY,
        id_generator: IdGenerator | None = None,
        validator: ValueValidator | None = None,
        transformer: ValueTransformer | None = None,
        named_queries: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        if table is None:
            cls.__entity_metadata__ = None
            return

        metadata = build_metadata(
            cls,
            table=table,
            fetch_mode=FetchMode(fetch_mode),
            id_generator=id_generator,
            validator=validator,
            transformer=transformer,
            named_queries=named_queries,
        )
        cls.__entity_metadata__ = metadata
        EntityRegistry().register(metadata)

    def __init__(self, data: Mapping[str, Any] | None = None, /, **fields: Any) -> None:
        if type(self).__entity_metadata__ is None:
            raise EntityError(
                f"Cannot create the entity {type(self).__name__} without a table declaration."
            )

        self.raw: dict[str, Any] = {}
        self._resolver: RelationResolver | None = None
        self.hydrate(data or {})

        for name, value in fields.items():
            if name not in self.metadata().columns:
                raise EntityError(f"{type(self).__name__} has no field {name!r}.")
            setattr(self, name, value)

    @classmethod
    def metadata(cls) -> EntityMetadata:
        if cls.__entity_metadata__ is None:
            raise EntityError(f"{cls.__name__} is not an entity, it has no table declaration.")

        return cls.__entity_metadata__

    @classmethod
    def columns(cls) -> Mapping[str, Column]:
        return cls.metadata().columns

    def hydrate(self, data: Mapping[str, Any]) -> None:
        """Replace the row shadow with *data*, filling declared defaults."""
        self.raw = dict(data)
        for column in self.metadata().scalar_columns.values():
            self.raw.setdefault(column.name, column.default)

    def get(self, column: str) -> Any:
        """Return the raw value of a storage column (``None`` when unknown)."""
        return self.raw.get(column)

    def set(self, column: str, value: Any) -> None:
        """Set the raw value of a storage column."""
        if column not in self.raw:
            raise EntityError(f"{type(self).__name__} has no column {column!r}.")

        self.raw[column] = value

    def _get_field_value(self, column: Column) -> Any:
        value = self.raw.get(column.name)
        metadata = self.metadata()
        if metadata.transformer is not None:
            return metadata.transformer.to_entity_value(metadata.table, column.name, value)

        return value

    def _set_field_value(self, column: Column, value: Any) -> None:
        metadata = self.metadata()
        if metadata.transformer is not None:
            value = metadata.transformer.to_database_value(metadata.table, column.name, value)

        self.raw[column.name] = value

    def bind(self, resolver: RelationResolver | None) -> None:
        """Attach the resolver used to populate relation fields on access."""
        self._resolver = resolver

    @property
    def resolver(self) -> RelationResolver | None:
        return self._resolver

    def _load_relation(self, attr: str) -> Any:
        if self._resolver is not None:
            return self._resolver.resolve(self, attr)

        field = relation_field(type(self), attr)
        return field.empty()

    def identity(self) -> tuple[Any, ...] | None:
        """Primary key value(s) identifying this entity, ``None`` when unset."""
        metadata = self.metadata()
        if metadata.composite_key is not None:
            key = getattr(self, metadata.composite_key)
            return None if key is None else tuple(key.components().values())

        if metadata.primary_key is not None:
            value = self.raw.get(metadata.columns[metadata.primary_key].name)
            return None if value is None else (value,)

        return None

    def __repr__(self) -> str:
        identity = self.identity()
        shown = ", ".join(map(repr, identity)) if identity else "transient"
        return f"<{type(self).__name__} {shown}>"


def relation_field(entity: type[Entity], attr: str) -> RelationField:
    """Return the relation descriptor *attr* of *entity*."""
    field = getattr(entity, attr, None)
    if not isinstance(field, RelationField):
        raise EntityError(f"{entity.__name__}.{attr} is not a relation field.")

    return field


def scalar_field(entity: type[Entity], attr: str) -> ScalarField | CompositeKeyField:
    """Return the scalar (or composite key) descriptor *attr* of *entity*."""
    field = getattr(entity, attr, None)
    if not isinstance(field, (ScalarField, CompositeKeyField)):
        raise EntityError(f"{entity.__name__}.{attr} is not a scalar field.")

    return field


class GenericEntity:
    """Metadata-free row of an arbitrary table, used with :class:`GenericFacade`.

    Example:
        >>> row = GenericEntity("settings", "key", {"key": "theme", "value": "dark"})
        >>> row.value
        'dark'
    """

    __slots__ = ("_data", "name", "pk")

    def __init__(self, name: str, pk: str, data: Mapping[str, Any] | None = None) -> None:
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "pk", pk)
        object.__setattr__(self, "_data", {})
        self.hydrate(data or {})

    def hydrate(self, data: Mapping[str, Any]) -> None:
        for column, value in data.items():
            self.set(column, value)

    def get(self, column: str) -> Any:
        return self._data.get(column)

    def set(self, column: str, value: Any) -> None:
        self._data[column] = value

    @property
    def data(self) -> dict[str, Any]:
        return dict(self._data)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        return self.get(name)

    def __setattr__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self._data!r}>"
