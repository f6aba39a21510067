"""Basic sqla-entities usage examples.

Demonstrates persistence units, facades, relation loading,
named queries and the query builder.

NOTE: This file is illustrative. It expects the example schema to exist
in the configured database.
"""

from __future__ import annotations

from sqla_entities import (
    Facade,
    GenericEntity,
    GenericFacade,
    QueryBuilder,
    create_executor,
    get_persistence_unit,
    register_persistence_unit,
)

from .models import Post, Profile, Role, User


# ── 1. Register a persistence unit once at startup ──────────────────

register_persistence_unit(
    "blog",
    {
        "DBMS": "sqlite",
        "Hostname": "",
        "DatabaseName": "blog.db",
        "Username": "",
        "Password": "",
    },
)
# or from a file: register_persistence_unit("blog", "config/blog.ini")


# ── 2. Writes through a facade ───────────────────────────────────────


def create_author(name: str, bio: str) -> User:
    with Facade(User, "blog") as users:
        author = User(name=name)
        users.create(author)

    with Facade(Profile, "blog") as profiles:
        profiles.create(Profile(user_id=author.id, bio=bio))

    return author


def rename(user_id: int, name: str) -> bool:
    with Facade(User, "blog") as users:
        user = users.find(user_id)
        if user is None:
            return False
        user.name = name
        return users.edit(user)


# ── 3. Reads and relation loading ────────────────────────────────────


def author_overview(user_id: int) -> dict[str, object]:
    with Facade(User, "blog") as users:
        # eager: posts, profile and roles are loaded with the user
        user = users.find(user_id)
        if user is None:
            return {}
        return {
            "name": user.name,
            "bio": user.profile.bio if user.profile else None,
            "posts": [post.title for post in user.posts.order("id")],
            "roles": sorted(role.name for role in user.roles),
        }


def post_author(post_id: int) -> str | None:
    with Facade(Post, "blog") as posts:
        post = posts.find(post_id)
        # lazy: the author is fetched on first access
        return post.author.name if post and post.author else None


def members_of(role_id: int) -> list[str]:
    with Facade(Role, "blog") as roles:
        role = roles.find(role_id)
        return [] if role is None else [user.name for user in roles.resolve(role, "users")]


# ── 4. Conditions and named queries ─────────────────────────────────


def titles_by(author_id: int) -> list[str]:
    with Facade(Post, "blog") as posts:
        found = posts.find_by({"author_id": author_id, "title": ("LIKE", "%python%")}, order=("id", "DESC"))
        return [post.title for post in found]


def find_by_name(name: str) -> User | None:
    with Facade(User, "blog") as users:
        query = users.get_named_query("by_name").set_param("name", name)
        query.run()
        return query.get_first_result()


# ── 5. Untyped rows and the query builder ───────────────────────────


def role_names() -> list[str]:
    with GenericFacade("blog") as generic:
        generic.create(GenericEntity("roles", "id", {"name": "guest"}))
        return [row.get("name") for row in generic.find_all_generic("roles", "id")]


def busiest_authors(limit: int = 5) -> list[dict[str, object]]:
    with create_executor(get_persistence_unit("blog")) as executor:
        return (
            QueryBuilder(executor, "posts")
            .group_by("author_id")
            .order("total", "DESC")
            .limit(0, limit)
            .select(["author_id", "COUNT(*) AS total"])
        )
