from __future__ import annotations

from typing import Any

import pytest

from sqla_entities import Entity, EntityError, EntityRegistry, RelationKind, column
from sqla_entities.tools import (
    _get_table_name,
    _resolve_mapped_property,
    entities_cache_clear,
    entities_cache_info,
    entity_key_conditions,
    get_primary_key,
    get_table_name,
    key_conditions,
    resolve_mapped_property,
)

from ..models import OrderLine, OrderLineKey, Post, Profile, Role, User


def _quote(value: Any) -> str:
    return "NULL" if value is None else f"'{value}'"


class TestTableAndPrimaryKey:
    def test_get_table_name(self) -> None:
        assert get_table_name(User) == "users"
        assert get_table_name(OrderLine) == "order_lines"

    def test_get_table_name_cached(self) -> None:
        _get_table_name.cache_clear()
        get_table_name(User)
        get_table_name(User)

        assert _get_table_name.cache_info().hits >= 1

    def test_get_primary_key(self) -> None:
        primary_key = get_primary_key(User)

        assert primary_key is not None
        assert primary_key.name == "id"
        assert get_primary_key(OrderLine) is None

    def test_not_an_entity(self) -> None:
        with pytest.raises(EntityError):
            get_table_name(dict)  # type: ignore[arg-type]


class TestResolveMappedProperty:
    def test_one_to_many_counterpart(self) -> None:
        assert resolve_mapped_property(Post, RelationKind.ONE_TO_MANY, "author_id", origin=User) == "author"

    def test_many_to_one_counterpart(self) -> None:
        assert resolve_mapped_property(User, RelationKind.MANY_TO_ONE, "id", origin=Post) == "posts"

    def test_one_to_one_counterpart(self) -> None:
        assert resolve_mapped_property(Profile, RelationKind.ONE_TO_ONE, "user_id", origin=User) == "user"
        assert resolve_mapped_property(User, RelationKind.ONE_TO_ONE, "id", origin=Profile) == "profile"

    def test_many_to_many_counterpart(self) -> None:
        found = resolve_mapped_property(
            Role, RelationKind.MANY_TO_MANY, "user_id", cross_table="user_roles", origin=User
        )

        assert found == "users"

    def test_not_found(self) -> None:
        assert resolve_mapped_property(Post, RelationKind.ONE_TO_MANY, "editor_id") is None
        assert resolve_mapped_property(Post, RelationKind.ONE_TO_MANY, "author_id", origin=Role) is None
        assert (
            resolve_mapped_property(Role, RelationKind.MANY_TO_MANY, "user_id", cross_table="other")
            is None
        )

    def test_cached(self) -> None:
        _resolve_mapped_property.cache_clear()
        resolve_mapped_property(Post, RelationKind.ONE_TO_MANY, "author_id", origin=User)
        resolve_mapped_property(Post, RelationKind.ONE_TO_MANY, "author_id", origin=User)

        assert _resolve_mapped_property.cache_info().hits == 1


class TestKeyConditions:
    def test_scalar(self) -> None:
        assert key_conditions(User, 5, _quote) == {"id": "'5'"}

    def test_primary_key_instance(self) -> None:
        key = OrderLineKey(order_id=1, line_no=2)

        assert key_conditions(OrderLine, key, _quote) == {"order_id": "'1'", "line_no": "'2'"}

    def test_composite_mapping(self) -> None:
        conditions = key_conditions(OrderLine, {"order_id": 3, "line_no": 4}, _quote)

        assert conditions == {"order_id": "'3'", "line_no": "'4'"}

    def test_no_primary_key(self, isolated_registry: EntityRegistry) -> None:
        class Log(Entity, table="logs"):
            message = column("message")

        with pytest.raises(EntityError, match="has no primary key"):
            key_conditions(Log, 1, _quote)

    def test_entity_without_key_value(self) -> None:
        with pytest.raises(EntityError, match="has no value"):
            entity_key_conditions(User(), _quote)

        with pytest.raises(EntityError, match="composite key"):
            entity_key_conditions(OrderLine(), _quote)

    def test_entity_key(self) -> None:
        assert entity_key_conditions(User({"id": 9}), _quote) == {"id": "'9'"}


class TestCacheHelpers:
    def test_info_lists_every_cache(self) -> None:
        info = entities_cache_info()

        assert set(info) == {"_resolve_mapped_property", "_get_primary_key", "_get_table_name"}

    def test_clear(self) -> None:
        get_table_name(User)
        entities_cache_clear()

        assert all(stats.currsize == 0 for stats in entities_cache_info().values())

    def test_registry_reset_clears_caches(self, isolated_registry: EntityRegistry) -> None:
        get_table_name(User)
        EntityRegistry.reset()

        assert _get_table_name.cache_info().currsize == 0
        assert User not in isolated_registry
