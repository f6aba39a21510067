from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any, TypeVar, overload


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


E = TypeVar("E")

_ORDER_MODES = ("asc", "desc")


def _sort_key(key: str | Callable[[Any], Any]) -> Callable[[Any], tuple[bool, Any]]:
    getter: Callable[[Any], Any] = key if callable(key) else (lambda entity: entity.get(key))

    # NULLs sort first, as in SQL ascending order.
    def _key(entity: Any) -> tuple[bool, Any]:
        value = getter(entity)
        return (value is not None, value)

    return _key


class EntityCollection(Sequence[E]):
    """Immutable ordered sequence of entities.

    Returned by facade look-ups and by collection relations.  ``order()``
    and ``filter()`` return new collections, the original is left unchanged.

    Example:
        >>> users = facade.find_all()
        >>> users.filter(lambda u: u.active).order("name", "desc")
        <EntityCollection [<User ...>, ...]>
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[E] = ()) -> None:
        self._items: tuple[E, ...] = tuple(items)

    @overload
    def __getitem__(self, index: int) -> E: ...

    @overload
    def __getitem__(self, index: slice) -> EntityCollection[E]: ...

    def __getitem__(self, index: int | slice) -> E | EntityCollection[E]:
        if isinstance(index, slice):
            return type(self)(self._items[index])

        return self._items[index]

    def __iter__(self) -> Iterator[E]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {list(self._items)!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EntityCollection):
            return self._items == other._items

        if isinstance(other, (list, tuple)):
            return list(self._items) == list(other)

        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(id(item) for item in self._items))

    def order(self, key: str | Callable[[E], Any], mode: str = "asc") -> Self:
        """Return a copy sorted by a column name (read with ``get``) or a key function.

        Args:
            key: Storage column name or callable returning the sort key.
            mode: ``"asc"`` or ``"desc"`` (case-insensitive).

        Raises:
            ValueError: If *mode* is neither ``asc`` nor ``desc``.
        """
        if mode.lower() not in _ORDER_MODES:
            raise ValueError(f"The sort mode must be 'asc' or 'desc', got {mode!r}")

        return type(self)(sorted(self._items, key=_sort_key(key), reverse=mode.lower() == "desc"))

    def filter(self, predicate: Callable[[E], bool]) -> Self:
        """Return a copy holding the entities for which *predicate* is true."""
        return type(self)(item for item in self._items if predicate(item))

    def first(self) -> E | None:
        return self._items[0] if self._items else None

    def to_list(self) -> list[E]:
        return list(self._items)


def as_collection(items: Sequence[E] | None) -> EntityCollection[E]:
    """Wrap *items* in an :class:`EntityCollection` unless it already is one."""
    if isinstance(items, EntityCollection):
        return items

    return EntityCollection(items or ())
