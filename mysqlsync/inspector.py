"""Read-only schema introspection."""

from __future__ import annotations

import logging
from datetime import datetime

from .connections import ConnectionManager
from .models import Role
from .sql import (
    is_system_schema,
    last_modified_query,
    list_databases_query,
    schema_exists_query,
    validate_database_name,
)

LOG = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class SchemaInspector:
    """Answers existence and freshness questions without mutating anything."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    def database_exists(self, role: Role, name: str) -> bool:
        """True only when the server clearly reports the schema.

        Output that cannot be read as a count is treated as "not exists".
        """

        validate_database_name(name)
        value = self._connections.execute(role, schema_exists_query(name)).scalar()
        try:
            return int(value or 0) > 0
        except ValueError:
            LOG.warning(
                "Ambiguous schema metadata; treating database as missing",
                extra={"role": role.value, "database": name},
            )
            return False

    def last_modified(self, role: Role, name: str) -> datetime | None:
        """Latest table UPDATE_TIME in the schema, or None when unknown."""

        validate_database_name(name)
        value = self._connections.execute(role, last_modified_query(name)).scalar()
        return parse_timestamp(value)

    def list_databases(self, role: Role) -> list[str]:
        """User databases on the server, sorted by name."""

        result = self._connections.execute(role, list_databases_query())
        names = {row[0] for row in result.rows if row and row[0]}
        return sorted(name for name in names if not is_system_schema(name))


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value.strip()[:19], TIMESTAMP_FORMAT)
    except ValueError:
        return None


__all__ = ["SchemaInspector", "parse_timestamp"]
