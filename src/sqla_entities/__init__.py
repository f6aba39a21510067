"""Lightweight entity mapping on top of SQLAlchemy Core.

sqla_entities maps plain classes onto tables with ``column()`` and the
relation factories (``one_to_one``, ``one_to_many``, ``many_to_one``,
``many_to_many``), then reads and writes them through a ``Facade``.
Statements are built with the fluent ``QueryBuilder`` and run by an
``Executor`` wrapping a SQLAlchemy connection; connection parameters come
from persistence units loaded from INI, JSON or XML files.
"""

from ._version import __version__, __version_tuple__
from .columns import (
    Column,
    Relation,
    RelationKind,
    column,
    composite_key,
    many_to_many,
    many_to_one,
    one_to_many,
    one_to_one,
)
from .core import OPERATORS, JoinClause, QueryBuilder, parse_value
from .datastructures import EntityCollection
from .entities import (
    Entity,
    FetchMode,
    GenericEntity,
    IdGenerator,
    PrimaryKey,
    ValueTransformer,
    ValueValidator,
)
from .exceptions import (
    EntityError,
    FacadeError,
    PersistenceUnitError,
    QueryError,
    SqlaEntitiesError,
    ValueValidatorError,
)
from .executor import Atomic, Executor, Statement, generated_key_strategy
from .facade import BaseFacadeListener, Facade, FacadeListener, GenericFacade, NamedQuery
from .manager import EntityManager
from .persistence import (
    PersistenceRegistry,
    PersistenceUnit,
    build_url,
    create_engine,
    create_executor,
    get_persistence_unit,
    load_persistence_unit,
    purge_persistence_units,
    register_persistence_unit,
    session_commands,
)
from .registry import EntityMetadata, EntityRegistry, get_metadata
from .resolver import RelationResolver
from .tools import (
    entities_cache_clear,
    entities_cache_info,
    get_primary_key,
    get_table_name,
    resolve_mapped_property,
)


__all__ = (
    "OPERATORS",
    "Atomic",
    "BaseFacadeListener",
    "Column",
    "Entity",
    "EntityCollection",
    "EntityError",
    "EntityManager",
    "EntityMetadata",
    "EntityRegistry",
    "Executor",
    "Facade",
    "FacadeError",
    "FacadeListener",
    "FetchMode",
    "GenericEntity",
    "GenericFacade",
    "IdGenerator",
    "JoinClause",
    "NamedQuery",
    "PersistenceRegistry",
    "PersistenceUnit",
    "PersistenceUnitError",
    "PrimaryKey",
    "QueryBuilder",
    "QueryError",
    "Relation",
    "RelationKind",
    "RelationResolver",
    "SqlaEntitiesError",
    "Statement",
    "ValueTransformer",
    "ValueValidator",
    "ValueValidatorError",
    "__version__",
    "__version_tuple__",
    "build_url",
    "column",
    "composite_key",
    "create_engine",
    "create_executor",
    "entities_cache_clear",
    "entities_cache_info",
    "generated_key_strategy",
    "get_metadata",
    "get_persistence_unit",
    "get_primary_key",
    "get_table_name",
    "load_persistence_unit",
    "many_to_many",
    "many_to_one",
    "one_to_many",
    "one_to_one",
    "parse_value",
    "purge_persistence_units",
    "register_persistence_unit",
    "resolve_mapped_property",
    "session_commands",
)
