"""Example entities for sqla-entities usage demos."""

from __future__ import annotations

import sqlalchemy as sa

from sqla_entities import Entity, FetchMode, column, many_to_many, many_to_one, one_to_many, one_to_one


metadata = sa.MetaData()

sa.Table(
    "users",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(100), nullable=False),
)
sa.Table(
    "profiles",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("user_id", sa.Integer, nullable=False, unique=True),
    sa.Column("bio", sa.String(500)),
)
sa.Table(
    "posts",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("author_id", sa.Integer, nullable=False),
    sa.Column("title", sa.String(200), nullable=False),
)
sa.Table(
    "roles",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(50), nullable=False),
)
sa.Table(
    "user_roles",
    metadata,
    sa.Column("user_id", sa.Integer, primary_key=True),
    sa.Column("role_id", sa.Integer, primary_key=True),
)


class User(
    Entity,
    table="users",
    fetch_mode=FetchMode.EAGER,
    named_queries={"by_name": "SELECT * FROM users WHERE name = :name"},
):
    id = column("id", "int", primary_key=True, auto_increment=True)
    name = column("name", "varchar", size=(1, 100))

    # a user owns many posts and one profile
    posts = many_to_one("Post", column="id", referenced_column="author_id")
    profile = one_to_one("Profile", column="id", referenced_column="user_id")
    roles = many_to_many("Role", cross_table="user_roles", column="id", referenced_column="user_id")


class Profile(Entity, table="profiles"):
    id = column("id", "int", primary_key=True, auto_increment=True)
    user_id = column("user_id", "int", unique=True)
    bio = column("bio", "varchar")

    user = one_to_one(User, column="user_id", referenced_column="id")


class Post(Entity, table="posts"):
    id = column("id", "int", primary_key=True, auto_increment=True)
    author_id = column("author_id", "int")
    title = column("title", "varchar")

    author = one_to_many(User, column="author_id", referenced_column="id")


class Role(Entity, table="roles"):
    id = column("id", "int", primary_key=True, auto_increment=True)
    name = column("name", "varchar")

    users = many_to_many(User, cross_table="user_roles", column="id", referenced_column="role_id")
