from __future__ import annotations

import configparser
import json
import logging
import os
import xml.etree.ElementTree as ET
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, ClassVar, final

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import event
from sqlalchemy import exc as sa_exc

from .exceptions import PersistenceUnitError
from .executor import Executor


logger = logging.getLogger(__name__)

Source = str | os.PathLike[str] | Mapping[str, Any]

_ANSI_QUOTES = "SET SQL_MODE=ANSI_QUOTES"
_CHARSET_DBMS = frozenset({"mysql", "mariadb", "pgsql", "postgresql", "sybase", "mssql"})
_ORACLE_DEFAULT_PORT = 1521

# package extra that installs the dialect and driver of each DBMS
_EXTRAS = {
    "mysql": "mysql",
    "mariadb": "mysql",
    "pgsql": "postgresql",
    "postgresql": "postgresql",
    "sybase": "sybase",
    "oracle": "oracle",
    "mssql": "mssql",
}


class PersistenceUnit(BaseModel):
    """Connection parameters of one database.

    Source keys follow the configuration file names (``DBMS``,
    ``Hostname``, ``DatabaseName``, ``Username``, ``Password``, and the
    optional ``Port``, ``Charset`` and ``Driver``); the Python field names
    are accepted as well.

    Example:
        >>> unit = PersistenceUnit.model_validate(
        ...     {"DBMS": "sqlite", "Hostname": "", "DatabaseName": ":memory:", "Username": "", "Password": ""}
        ... )
        >>> build_url(unit).render_as_string()
        'sqlite:///:memory:'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    dbms: str = Field(alias="DBMS")
    hostname: str = Field(alias="Hostname")
    database: str = Field(alias="DatabaseName")
    username: str = Field(alias="Username")
    password: str = Field(alias="Password", repr=False)
    port: int | None = Field(default=None, alias="Port")
    charset: str | None = Field(default=None, alias="Charset")
    driver: str | None = Field(default=None, alias="Driver")

    @field_validator("dbms")
    @classmethod
    def _normalize_dbms(cls, value: str) -> str:
        return value.lower()

    @field_validator("port", "charset", "driver", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @classmethod
    def from_mapping(cls, content: Mapping[str, Any]) -> PersistenceUnit:
        """Validate *content*, reporting problems as :class:`PersistenceUnitError`."""
        try:
            return cls.model_validate(dict(content))
        except ValidationError as e:
            error = e.errors()[0]
            key = ".".join(str(part) for part in error["loc"])
            if error["type"] == "missing":
                raise PersistenceUnitError(
                    f"Malformed persistence unit configuration, missing the {key} value."
                ) from e
            raise PersistenceUnitError(
                f"Malformed persistence unit configuration, invalid {key} value: {error['msg']}."
            ) from e


def _load_ini(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # type: ignore[assignment,method-assign]
    try:
        parser.read_string(text)
    except configparser.MissingSectionHeaderError:
        parser.read_string(f"[{configparser.DEFAULTSECT}]\n{text}")

    content = dict(parser.defaults())
    for section in parser.sections():
        content.update(parser.items(section))

    return {key: value.strip("\"'") for key, value in content.items()}


def _load_json(path: Path) -> dict[str, Any]:
    content = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(content, dict):
        raise PersistenceUnitError(f"The persistence unit file {path.name} must hold a JSON object.")

    return content


def _load_xml(path: Path) -> dict[str, Any]:
    root = ET.parse(path).getroot()
    return {child.tag: (child.text or "").strip() for child in root}


_LOADERS: dict[str, Callable[[Path], dict[str, Any]]] = {
    ".ini": _load_ini,
    ".json": _load_json,
    ".xml": _load_xml,
}


def load_persistence_unit(source: Source) -> PersistenceUnit:
    """Build a :class:`PersistenceUnit` from a mapping or an ``.ini``/``.json``/``.xml`` file.

    Raises:
        PersistenceUnitError: If the file type is not supported, the file
            cannot be read or parsed, or a required key is missing.
    """
    if isinstance(source, Mapping):
        return PersistenceUnit.from_mapping(source)

    path = Path(source)
    loader = _LOADERS.get(path.suffix.lower())
    if loader is None:
        raise PersistenceUnitError(
            f"Unsupported file type used to create persistence unit {path.name}."
        )

    logger.debug("Loading persistence unit from %s", path)
    try:
        content = loader(path)
    except (OSError, ValueError, configparser.Error, ET.ParseError) as e:
        raise PersistenceUnitError(f"Unable to read the persistence unit file {path.name}: {e}") from e

    return PersistenceUnit.from_mapping(content)


@final
class PersistenceRegistry:
    """Process-wide table of named persistence units.

    Sources are registered by key and loaded on first use; the loaded unit
    is cached until the key is registered again or the registry is purged.
    """

    __instance: ClassVar[PersistenceRegistry | None] = None
    _sources: dict[str, Source]
    _units: dict[str, PersistenceUnit]

    def __new__(cls) -> PersistenceRegistry:
        if cls.__instance is None:
            instance = super().__new__(cls)
            instance._sources = {}
            instance._units = {}
            cls.__instance = instance

        return cls.__instance

    def register(self, key: str, source: Source) -> None:
        self._sources[key] = source
        self._units.pop(key, None)

    def is_registered(self, key: str) -> bool:
        return key in self._sources

    def resolve(self, key: str) -> PersistenceUnit:
        """Return the unit registered under *key*.

        Raises:
            PersistenceUnitError: If nothing is registered under *key* or the
                source is malformed.
        """
        unit = self._units.get(key)
        if unit is not None:
            return unit

        try:
            source = self._sources[key]
        except KeyError:
            raise PersistenceUnitError(f"No persistence unit is registered under {key!r}.") from None

        unit = self._units[key] = load_persistence_unit(source)
        return unit

    def purge(self) -> None:
        self._sources.clear()
        self._units.clear()


def register_persistence_unit(key: str, source: Source) -> None:
    PersistenceRegistry().register(key, source)


def get_persistence_unit(key: str) -> PersistenceUnit:
    return PersistenceRegistry().resolve(key)


def purge_persistence_units() -> None:
    PersistenceRegistry().purge()


def _as_unit(unit: PersistenceUnit | str) -> PersistenceUnit:
    return get_persistence_unit(unit) if isinstance(unit, str) else unit


def build_url(unit: PersistenceUnit | str) -> sa.URL:
    """Map a persistence unit onto a SQLAlchemy URL.

    Raises:
        PersistenceUnitError: If the DBMS is not supported.
    """
    unit = _as_unit(unit)
    server = {
        "username": unit.username or None,
        "password": unit.password or None,
        "host": unit.hostname or None,
        "port": unit.port,
        "database": unit.database,
    }

    match unit.dbms:
        case "mysql" | "mariadb":
            return sa.URL.create(f"{unit.dbms}+pymysql", **server)
        case "pgsql" | "postgresql":
            return sa.URL.create("postgresql+psycopg", **server)
        case "sybase":
            return sa.URL.create("sybase+pyodbc", **server)
        case "oracle":
            return sa.URL.create("oracle+oracledb", **{**server, "port": unit.port or _ORACLE_DEFAULT_PORT})
        case "mssql":
            driver = "mssql+pymssql" if unit.driver == "dblib" else "mssql+pyodbc"
            return sa.URL.create(driver, **server)
        case "sqlite":
            return sa.URL.create("sqlite", database=unit.database)

    raise PersistenceUnitError(f"The DBMS {unit.dbms!r} is not supported.")


def session_commands(unit: PersistenceUnit | str) -> list[str]:
    """Statements run on every new connection of *unit*."""
    unit = _as_unit(unit)
    commands: list[str] = []
    if unit.dbms in ("mysql", "mariadb"):
        commands.append(_ANSI_QUOTES)
    elif unit.dbms == "mssql":
        commands += ["SET QUOTED_IDENTIFIER ON", "SET ANSI_NULLS ON"]

    if unit.dbms in _CHARSET_DBMS and unit.charset:
        commands.append(f"SET NAMES '{unit.charset}'")

    return commands


def create_engine(unit: PersistenceUnit | str, **engine_kwargs: Any) -> sa.Engine:
    """Create an engine for *unit* that runs the session commands on connect.

    Args:
        unit: A :class:`PersistenceUnit`, or the key it is registered under.
        **engine_kwargs: Extra arguments forwarded to ``sqlalchemy.create_engine``.

    Raises:
        PersistenceUnitError: If the dialect or driver of the DBMS is not installed.
    """
    unit = _as_unit(unit)
    url = build_url(unit)
    try:
        engine = sa.create_engine(url, **engine_kwargs)
    except (sa_exc.NoSuchModuleError, ImportError) as e:
        extra = _EXTRAS.get(unit.dbms)
        hint = f" Install it with `pip install sqla-entities[{extra}]`." if extra else ""
        raise PersistenceUnitError(
            f"The {url.drivername!r} dialect used by the {unit.dbms!r} DBMS is not available: {e}.{hint}"
        ) from e

    commands = session_commands(unit)

    if commands:

        @event.listens_for(engine, "connect")
        def _run_session_commands(dbapi_connection: Any, _: Any) -> None:
            cursor = dbapi_connection.cursor()
            for command in commands:
                cursor.execute(command)
            cursor.close()

    return engine


def create_executor(unit: PersistenceUnit | str, **engine_kwargs: Any) -> Executor:
    """Open an :class:`Executor` on the database described by *unit*."""
    return Executor(create_engine(unit, **engine_kwargs))
