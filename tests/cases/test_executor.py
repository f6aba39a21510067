from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_entities import Executor, QueryBuilder, QueryError


def _settings(executor: Executor) -> QueryBuilder:
    return QueryBuilder(executor, "settings")


@pytest.mark.usefixtures("seed_data")
class TestTransactions:
    def test_autocommit_outside_transaction(self, executor: Executor) -> None:
        _settings(executor).insert({"name": "'a'", "value": "'1'"})

        assert not executor.in_transaction()
        assert not executor.connection.in_transaction()

    def test_commit(self, executor: Executor) -> None:
        with executor.transaction():
            _settings(executor).insert({"name": "'a'", "value": "'1'"})
            assert executor.in_transaction()

        assert _settings(executor).count() == 3

    def test_rollback_on_error(self, executor: Executor) -> None:
        with pytest.raises(RuntimeError), executor.transaction():
            _settings(executor).insert({"name": "'a'", "value": "'1'"})
            raise RuntimeError("boom")

        assert _settings(executor).count() == 2
        assert not executor.in_transaction()

    def test_atomic_decorator(self, executor: Executor) -> None:
        @executor.transaction()
        def add_two() -> None:
            _settings(executor).insert({"name": "'a'", "value": "'1'"})
            _settings(executor).insert({"name": "'theme'", "value": "'duplicate'"})

        with pytest.raises(QueryError):
            add_two()

        assert _settings(executor).count() == 2

    def test_manual_transaction(self, executor: Executor) -> None:
        executor.begin_transaction()
        _settings(executor).insert({"name": "'a'", "value": "'1'"})
        executor.rollback()

        assert _settings(executor).count() == 2

    def test_nested_transaction(self, executor: Executor, db_backend: str) -> None:
        if db_backend == "sqlite":
            pytest.skip("pysqlite does not emit SAVEPOINT reliably")

        with executor.transaction():
            _settings(executor).insert({"name": "'outer'", "value": "'1'"})
            with pytest.raises(RuntimeError), executor.transaction():
                _settings(executor).insert({"name": "'inner'", "value": "'2'"})
                raise RuntimeError("inner")

        names = {row["name"] for row in _settings(executor).select("name")}
        assert names == {"theme", "lang", "outer"}

    def test_commit_without_transaction(self, executor: Executor) -> None:
        with pytest.raises(QueryError, match="no active transaction to commit"):
            executor.commit()

        with pytest.raises(QueryError, match="no active transaction to roll back"):
            executor.rollback()


class TestStatements:
    def test_named_parameters(self, executor: Executor, seed_data: None) -> None:
        statement = executor.prepare("SELECT name FROM users WHERE id = :id")

        assert statement.execute({"id": 2}) == [{"name": "bob"}]

    def test_non_query_returns_true(self, executor: Executor) -> None:
        assert executor.prepare("DELETE FROM users").execute() is True

    def test_error_message_kept(self, executor: Executor) -> None:
        statement = executor.prepare("SELECT * FROM no_such_table")

        with pytest.raises(QueryError):
            statement.execute()

        assert statement.error_message
        assert "no_such_table" in statement.error_message

    def test_last_insert_id(self, executor: Executor, seed_data: None) -> None:
        QueryBuilder(executor, "roles").insert({"name": "'guest'", "level": 0})

        assert executor.last_insert_id() == 4


class TestQuote:
    def test_strings_are_escaped(self, executor: Executor) -> None:
        assert executor.quote("O'Brien") == "'O''Brien'"

    def test_none_and_numbers(self, executor: Executor) -> None:
        assert executor.quote(None) == "NULL"
        assert executor.quote(5) == "5"

    def test_other_values_use_str(self, executor: Executor) -> None:
        class Slug:
            def __str__(self) -> str:
                return "my-slug"

        assert executor.quote(Slug()) == "'my-slug'"

    def test_quoted_value_round_trip(self, executor: Executor, seed_data: None) -> None:
        builder = QueryBuilder(executor, "settings")
        builder.insert({"name": executor.quote("motto"), "value": executor.quote("it's fine")})

        assert builder.where({"name": executor.quote("motto")}).select_first("value") == {"value": "it's fine"}


def _force_strategy(monkeypatch: pytest.MonkeyPatch, strategy: str) -> None:
    monkeypatch.setattr(Executor, "key_strategy", property(lambda self: strategy))


@pytest.mark.usefixtures("seed_data")
class TestGeneratedKeys:
    def test_returning_clause(self, executor: Executor, db_backend: str, monkeypatch: pytest.MonkeyPatch) -> None:
        if db_backend != "sqlite":
            pytest.skip("RETURNING is checked on sqlite")
        _force_strategy(monkeypatch, "returning")

        builder = QueryBuilder(executor, "roles")
        assert builder.insert({"name": "'guest'", "level": 0}, returning="id") is True

        assert builder.query_string.endswith("RETURNING id")
        assert executor.last_insert_id() == 4

    def test_rowid_lookup(self, executor: Executor, db_backend: str, monkeypatch: pytest.MonkeyPatch) -> None:
        if db_backend != "sqlite":
            pytest.skip("ROWID lookups are checked on sqlite")
        _force_strategy(monkeypatch, "rowid")

        QueryBuilder(executor, "roles").insert({"name": "'guest'", "level": 0}, returning="id")

        assert executor.last_insert_id() == 4

    def test_lastrowid(self, executor: Executor) -> None:
        QueryBuilder(executor, "roles").insert({"name": "'guest'", "level": 0}, returning="id")

        assert executor.last_insert_id() == 4

    def test_previous_key_is_not_kept(
        self, executor: Executor, db_backend: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        if db_backend != "sqlite":
            pytest.skip("RETURNING is checked on sqlite")
        _force_strategy(monkeypatch, "returning")

        QueryBuilder(executor, "roles").insert({"name": "'guest'", "level": 0}, returning="id")
        _settings(executor).insert({"name": "'a'", "value": "'1'"})

        assert executor.last_insert_id() is None

    def test_missing_key(self, executor: Executor) -> None:
        with pytest.raises(QueryError, match="Unable to read the key generated for roles.id"):
            executor.read_generated_key("roles", "id", True)


@pytest.mark.usefixtures("seed_data")
class TestBorrowedConnection:
    def test_caller_transaction_is_not_committed(self, engine: sa.Engine) -> None:
        with engine.connect() as connection:
            connection.begin()
            borrowed = Executor(connection)
            _settings(borrowed).insert({"name": "'a'", "value": "'1'"})

            assert connection.in_transaction()
            connection.rollback()

            assert _settings(borrowed).count() == 2

    def test_transaction_inside_caller_transaction(self, engine: sa.Engine, db_backend: str) -> None:
        if db_backend == "sqlite":
            pytest.skip("pysqlite does not emit SAVEPOINT reliably")

        with engine.connect() as connection:
            connection.begin()
            borrowed = Executor(connection)
            with borrowed.transaction():
                _settings(borrowed).insert({"name": "'a'", "value": "'1'"})

            assert connection.in_transaction()
            connection.rollback()

            assert _settings(borrowed).count() == 2
