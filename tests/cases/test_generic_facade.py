from __future__ import annotations

import pytest

from sqla_entities import EntityError, Executor, FacadeError, GenericEntity, GenericFacade

from ..models import User


@pytest.fixture
def generic(executor: Executor) -> GenericFacade:
    return GenericFacade(executor)


@pytest.mark.usefixtures("seed_data")
class TestGenericReads:
    def test_find_generic(self, generic: GenericFacade) -> None:
        theme = generic.find_generic("settings", "name", "theme")

        assert theme is not None
        assert theme.value == "dark"
        assert theme.pk == "name"

    def test_find_generic_missing(self, generic: GenericFacade) -> None:
        assert generic.find_generic("settings", "name", "nope") is None

    def test_find_all_generic(self, generic: GenericFacade) -> None:
        rows = generic.find_all_generic("settings", "name")

        assert sorted(row.get("name") for row in rows) == ["lang", "theme"]

    def test_find_range_generic(self, generic: GenericFacade) -> None:
        rows = generic.find_range_generic("posts", "id", 1, 2)

        assert len(rows) == 2

    def test_count_generic(self, generic: GenericFacade) -> None:
        assert generic.count_generic("posts") == 4

    @pytest.mark.parametrize("method", ["find", "find_all", "count"])
    def test_typed_lookups_unavailable(self, generic: GenericFacade, method: str) -> None:
        with pytest.raises(FacadeError, match=f'"{method}" method is unavailable'):
            getattr(generic, method)(*([1] if method == "find" else []))

    def test_find_range_unavailable(self, generic: GenericFacade) -> None:
        with pytest.raises(FacadeError, match="find_range_generic"):
            generic.find_range(0, 1)


@pytest.mark.usefixtures("seed_data")
class TestGenericWrites:
    def test_create(self, generic: GenericFacade) -> None:
        setting = GenericEntity("settings", "name", {"name": "mode", "value": "it's fast"})

        assert generic.create(setting) is True
        assert generic.find_generic("settings", "name", "mode").value == "it's fast"  # type: ignore[union-attr]

    def test_create_auto_increment(self, generic: GenericFacade) -> None:
        role = GenericEntity("roles", "id", {"name": "guest", "level": 0})
        generic.create(role)

        assert role.get("id") == 4

    def test_edit(self, generic: GenericFacade) -> None:
        theme = generic.find_generic("settings", "name", "theme")
        assert theme is not None
        theme.value = "light"

        assert generic.edit(theme) is True
        assert generic.find_generic("settings", "name", "theme").value == "light"  # type: ignore[union-attr]
        assert generic.find_generic("settings", "name", "lang").value == "en"  # type: ignore[union-attr]

    def test_delete(self, generic: GenericFacade) -> None:
        lang = generic.find_generic("settings", "name", "lang")
        assert lang is not None

        assert generic.delete(lang) is True
        assert generic.count_generic("settings") == 1

    def test_failure_rolls_back(self, generic: GenericFacade) -> None:
        duplicate = GenericEntity("settings", "name", {"name": "theme", "value": "again"})

        with pytest.raises(EntityError):
            generic.create(duplicate)

        assert generic.count_generic("settings") == 2

    def test_only_generic_entities(self, generic: GenericFacade) -> None:
        with pytest.raises(FacadeError, match="Only GenericEntity instances"):
            generic.create(User(name="x"))  # type: ignore[arg-type]
