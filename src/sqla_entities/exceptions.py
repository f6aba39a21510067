from __future__ import annotations


class SqlaEntitiesError(Exception):
    """Base class for all sqla_entities exceptions."""


class PersistenceUnitError(SqlaEntitiesError):
    """Raised when a persistence unit is unknown, unreadable or malformed."""


class EntityError(SqlaEntitiesError):
    """Raised for invalid entity declarations and failed entity writes."""


class ValueValidatorError(EntityError):
    """Raised when a value validator rejects the value of an entity field."""

    def __init__(self, field: str) -> None:
        super().__init__(f"The value of the field {field!r} is not valid.")
        self.field = field


class QueryError(SqlaEntitiesError):
    """Raised when a statement cannot be built, prepared or executed."""


class FacadeError(SqlaEntitiesError):
    """Raised for facade misuse (wrong entity type, unknown named query)."""
