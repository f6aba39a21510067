from __future__ import annotations

import pytest

from sqla_entities import Executor, JoinClause, QueryBuilder, QueryError


@pytest.mark.usefixtures("seed_data")
class TestSelect:
    def test_select_where(self, executor: Executor) -> None:
        rows = QueryBuilder(executor, "users").where({"active": 1}).order("id").select("name")

        assert rows == [{"name": "alice"}, {"name": "bob"}]

    def test_select_or(self, executor: Executor) -> None:
        rows = QueryBuilder(executor, "users").where({"id": 1}).where({"id": 3}).order("id").select("id")

        assert [row["id"] for row in rows] == [1, 3]

    def test_select_operator(self, executor: Executor) -> None:
        rows = QueryBuilder(executor, "posts").where({"views": ">= 7"}).order("id").select("id")

        assert [row["id"] for row in rows] == [1, 4]

    def test_select_first(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "users")

        assert builder.where({"name": executor.quote("bob")}).select_first() == {
            "id": 2,
            "name": "bob",
            "email": "bob@example.com",
            "active": 1,
        }
        assert builder.where({"id": 42}).select_first() is None

    def test_limit(self, executor: Executor) -> None:
        rows = QueryBuilder(executor, "users").order("id").limit(1, 2).select("id")

        assert [row["id"] for row in rows] == [2, 3]

    def test_distinct(self, executor: Executor) -> None:
        rows = QueryBuilder(executor, "posts").distinct().order("author_id").select("author_id")

        assert rows == [{"author_id": 1}, {"author_id": 2}]

    def test_join(self, executor: Executor) -> None:
        rows = (
            QueryBuilder(executor, "user_roles")
            .where({"user_roles.user_id": 1})
            .join("roles.name", [JoinClause("LEFT", "roles", "user_roles.role_id = roles.id")])
        )

        assert sorted(row["name"] for row in rows) == ["admin", "editor"]


@pytest.mark.usefixtures("seed_data")
class TestClauseReset:
    def test_clauses_reset_after_select(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "users")
        builder.where({"id": 1}).order("name", "DESC").limit(0, 1).select()

        assert len(builder.select()) == 3
        assert builder.query_string == "SELECT * FROM users"

    def test_query_string_kept(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "users")
        builder.where({"id": 1}).select()

        assert builder.query_string == "SELECT * FROM users WHERE (id = 1)"

    def test_failed_statement_keeps_clauses(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "users").where({"missing_column": 1})

        with pytest.raises(QueryError):
            builder.select()

        assert builder.render_select() == "SELECT * FROM users WHERE (missing_column = 1)"


@pytest.mark.usefixtures("seed_data")
class TestCount:
    def test_count(self, executor: Executor) -> None:
        assert QueryBuilder(executor, "users").count() == 3

    def test_count_where(self, executor: Executor) -> None:
        assert QueryBuilder(executor, "posts").where({"author_id": 1}).count() == 3

    def test_count_grouped(self, executor: Executor) -> None:
        counts = QueryBuilder(executor, "posts").group_by("author_id").count()

        assert counts == {1: 3, 2: 1}
        assert sum(counts.values()) == QueryBuilder(executor, "posts").count()  # type: ignore[union-attr]

    def test_count_empty(self, executor: Executor) -> None:
        assert QueryBuilder(executor, "tokens").count() == 0


@pytest.mark.usefixtures("seed_data")
class TestWrites:
    def test_insert(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "settings")

        assert builder.insert({"name": executor.quote("mode"), "value": executor.quote("fast")}) is True
        assert builder.where({"name": executor.quote("mode")}).select_first("value") == {"value": "fast"}

    def test_insert_many(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "roles")
        builder.insert_many(["id", "name", "level"], [[4, "'guest'", 0], [5, "'owner'", 99]])

        assert builder.count() == 5

    def test_insert_many_requires_rows(self, executor: Executor) -> None:
        with pytest.raises(QueryError, match="at least one row"):
            QueryBuilder(executor, "roles").insert_many(["id"], [])

    def test_update(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "settings")
        builder.where({"name": "'theme'"}).update({"value": "'light'"})

        assert builder.where({"name": "'theme'"}).select_first("value") == {"value": "light"}
        assert builder.where({"name": "'lang'"}).select_first("value") == {"value": "en"}

    def test_update_raw_fragment(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "posts")
        builder.where({"author_id": 1}).update("views = views + 1")

        assert [row["views"] for row in builder.where({"author_id": 1}).order("id").select("views")] == [11, 6, 1]

    def test_delete(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "posts")
        builder.where({"author_id": 1}).delete()

        assert builder.count() == 1

    def test_truncate(self, executor: Executor) -> None:
        builder = QueryBuilder(executor, "posts")
        builder.truncate()

        assert builder.count() == 0
