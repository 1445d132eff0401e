"""Identifier validation and statement builders for the MySQL dialect."""

from __future__ import annotations

import re

from sqlglot import exp

from .errors import PreconditionFailure

DIALECT = "mysql"
CHARSET = "utf8mb4"
COLLATION = "utf8mb4_unicode_ci"
SYSTEM_SCHEMAS = frozenset({"information_schema", "performance_schema", "mysql", "sys"})

_DATABASE_NAME = re.compile(r"^[A-Za-z0-9_$][A-Za-z0-9_$-]{0,63}$")


def validate_database_name(name: str) -> str:
    """Return `name` unchanged if MySQL accepts it as a schema name we manage."""

    if not isinstance(name, str) or not _DATABASE_NAME.fullmatch(name):
        raise PreconditionFailure(
            f"Invalid database name {name!r}: use 1-64 letters, digits, '_', '$' or '-', not starting with '-'."
        )
    if is_system_schema(name):
        raise PreconditionFailure(f"'{name}' is a system database and cannot be synchronized.")
    return name


def is_system_schema(name: str) -> bool:
    return name.lower() in SYSTEM_SCHEMAS


def quote_identifier(name: str) -> str:
    return exp.to_identifier(name, quoted=True).sql(dialect=DIALECT)


def schema_exists_query(name: str) -> str:
    return (
        exp.select(exp.func("COUNT", exp.Star()))
        .from_("INFORMATION_SCHEMA.SCHEMATA")
        .where(exp.column("SCHEMA_NAME").eq(exp.Literal.string(name)))
        .sql(dialect=DIALECT)
    )


def last_modified_query(name: str) -> str:
    return (
        exp.select(exp.func("MAX", exp.column("UPDATE_TIME")).as_("last_modified"))
        .from_("INFORMATION_SCHEMA.TABLES")
        .where(exp.column("TABLE_SCHEMA").eq(exp.Literal.string(name)))
        .sql(dialect=DIALECT)
    )


def list_databases_query() -> str:
    return "SHOW DATABASES"


def create_database_statement(name: str) -> str:
    return (
        f"CREATE DATABASE IF NOT EXISTS {quote_identifier(name)} "
        f"CHARACTER SET {CHARSET} COLLATE {COLLATION}"
    )


def drop_database_statement(name: str) -> str:
    return f"DROP DATABASE IF EXISTS {quote_identifier(name)}"


__all__ = [
    "CHARSET",
    "COLLATION",
    "SYSTEM_SCHEMAS",
    "create_database_statement",
    "drop_database_statement",
    "is_system_schema",
    "last_modified_query",
    "list_databases_query",
    "quote_identifier",
    "schema_exists_query",
    "validate_database_name",
]
