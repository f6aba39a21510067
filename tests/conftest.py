from __future__ import annotations

import os
from collections.abc import Iterator

import pytest
import sqlalchemy as sa

from sqla_entities import EntityRegistry, Executor, entities_cache_clear, purge_persistence_units

from .models import metadata, order_lines, posts, profiles, roles, settings, user_roles, users


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "mysql"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def db_url(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                yield f"mysql+pymysql://{my.username}:{my.password}@{host}:{port}/{my.dbname}"

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture
def engine(db_url: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_url)
    metadata.create_all(engine)
    yield engine
    metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def executor(engine: sa.Engine) -> Iterator[Executor]:
    with Executor(engine) as executor:
        yield executor


@pytest.fixture
def seed_data(engine: sa.Engine, executor: Executor) -> None:
    with engine.begin() as conn:
        conn.execute(
            users.insert(),
            [
                {"id": 1, "name": "alice", "email": "alice@example.com", "active": 1},
                {"id": 2, "name": "bob", "email": "bob@example.com", "active": 1},
                {"id": 3, "name": "charlie", "email": None, "active": 0},
            ],
        )
        conn.execute(
            posts.insert(),
            [
                {"id": 1, "author_id": 1, "title": "Alice Post 1", "views": 10},
                {"id": 2, "author_id": 1, "title": "Alice Post 2", "views": 5},
                {"id": 3, "author_id": 1, "title": "Alice Post 3", "views": 0},
                {"id": 4, "author_id": 2, "title": "Bob Post 1", "views": 7},
            ],
        )
        conn.execute(
            profiles.insert(),
            [
                {"id": 1, "user_id": 1, "bio": "Alice bio"},
                {"id": 2, "user_id": 2, "bio": "Bob bio"},
            ],
        )
        conn.execute(
            roles.insert(),
            [
                {"id": 1, "name": "admin", "level": 10},
                {"id": 2, "name": "editor", "level": 5},
                {"id": 3, "name": "viewer", "level": 1},
            ],
        )
        conn.execute(
            user_roles.insert(),
            [
                {"user_id": 1, "role_id": 1},
                {"user_id": 1, "role_id": 2},
                {"user_id": 2, "role_id": 2},
                {"user_id": 2, "role_id": 3},
                # dangling: role 99 does not exist
                {"user_id": 3, "role_id": 99},
            ],
        )
        conn.execute(
            order_lines.insert(),
            [
                {"order_id": 1, "line_no": 1, "product": "widget", "quantity": 2},
                {"order_id": 1, "line_no": 2, "product": "gadget", "quantity": 1},
                {"order_id": 2, "line_no": 1, "product": "widget", "quantity": 5},
            ],
        )
        conn.execute(
            settings.insert(),
            [
                {"name": "theme", "value": "dark"},
                {"name": "lang", "value": "en"},
            ],
        )


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    entities_cache_clear()


@pytest.fixture(autouse=True)
def purge_units() -> Iterator[None]:
    yield
    purge_persistence_units()


@pytest.fixture
def isolated_registry() -> Iterator[EntityRegistry]:
    """Restore the entity registry after a test declaring throwaway entities."""
    registry = EntityRegistry()
    by_type = dict(registry._by_type)
    by_name = dict(registry._by_name)
    yield registry
    registry._by_type.clear()
    registry._by_type.update(by_type)
    registry._by_name.clear()
    registry._by_name.update(by_name)
    entities_cache_clear()
