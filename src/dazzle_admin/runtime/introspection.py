"""
Schema introspection - derives resource specifications from a data model.

The admin never has static knowledge of the application's model. An
introspector answers three questions: which resources exist, which fields
each one has, and which field identifies a record. Two implementations
are provided: one over resources declared in Python, one reading the
schema of a SQLite database.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol, runtime_checkable

from dazzle_admin.runtime.logging import get_store_logger
from dazzle_admin.runtime.query import quote_identifier
from dazzle_admin.specs.resource import (
    FieldSpec,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

logger = get_store_logger()


@runtime_checkable
class SchemaIntrospector(Protocol):
    """Source of resource metadata."""

    def list_resources(self) -> list[ResourceSpec]: ...

    def fields_of(self, resource_name: str) -> list[FieldSpec]: ...

    def identifier_field_of(self, resource_name: str) -> str: ...


class StaticIntrospector:
    """Introspector over resources declared in code."""

    def __init__(self, resources: list[ResourceSpec]):
        self._resources = {r.name: r for r in resources}

    def list_resources(self) -> list[ResourceSpec]:
        return list(self._resources.values())

    def fields_of(self, resource_name: str) -> list[FieldSpec]:
        return list(self._resources[resource_name].fields)

    def identifier_field_of(self, resource_name: str) -> str:
        return self._resources[resource_name].id_field


# =============================================================================
# SQLite Introspection
# =============================================================================


def _sqlite_type_to_scalar(declared: str) -> ScalarType:
    """
    Map a declared column type to a scalar type.

    Follows SQLite's affinity rules, with the common non-affinity names
    (BOOLEAN, DATE, DATETIME, JSON, UUID) recognised first.
    """
    decl = declared.upper()
    if "BOOL" in decl:
        return ScalarType.BOOL
    if "DATETIME" in decl or "TIMESTAMP" in decl:
        return ScalarType.DATETIME
    if decl.startswith("DATE"):
        return ScalarType.DATE
    if "JSON" in decl:
        return ScalarType.JSON
    if "UUID" in decl:
        return ScalarType.UUID
    if "INT" in decl:
        return ScalarType.INT
    if "DECIMAL" in decl or "NUMERIC" in decl:
        return ScalarType.DECIMAL
    if "REAL" in decl or "FLOA" in decl or "DOUB" in decl:
        return ScalarType.FLOAT
    if "CLOB" in decl:
        return ScalarType.TEXT
    return ScalarType.STR


class SQLiteIntrospector:
    """
    Introspector reading ``sqlite_master`` and table PRAGMAs.

    - Every table with a single-column primary key becomes a resource.
    - Foreign key columns become to-one relation fields.
    - Tables made only of two foreign keys are treated as join tables:
      they are not resources, and each side gets a to-many relation field
      named after the other table (lower-cased, pluralized with "s").
    - NOT NULL columns without a default are required.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._resources: dict[str, ResourceSpec] | None = None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _load(self) -> dict[str, ResourceSpec]:
        if self._resources is not None:
            return self._resources

        conn = self._connect()
        try:
            tables = [
                row["name"]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' "
                    "AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            ]
            columns = {
                t: conn.execute(f"PRAGMA table_info({quote_identifier(t)})").fetchall()
                for t in tables
            }
            foreign_keys = {
                t: conn.execute(f"PRAGMA foreign_key_list({quote_identifier(t)})").fetchall()
                for t in tables
            }
        finally:
            conn.close()

        join_tables = {
            t
            for t in tables
            if len(columns[t]) == 2 and len(foreign_keys[t]) == 2
        }

        many_fields: dict[str, list[FieldSpec]] = {t: [] for t in tables}
        for jt in sorted(join_tables):
            left, right = foreign_keys[jt]
            many_fields[left["table"]].append(
                RelationFieldSpec(
                    name=f"{right['table'].lower()}s",
                    target=right["table"],
                    many=True,
                    through=jt,
                    source_column=left["from"],
                    target_column=right["from"],
                )
            )
            many_fields[right["table"]].append(
                RelationFieldSpec(
                    name=f"{left['table'].lower()}s",
                    target=left["table"],
                    many=True,
                    through=jt,
                    source_column=right["from"],
                    target_column=left["from"],
                )
            )

        resources: dict[str, ResourceSpec] = {}
        for table in tables:
            if table in join_tables:
                continue
            pk_columns = [c for c in columns[table] if c["pk"]]
            if len(pk_columns) != 1:
                logger.warning(f"Skipping table {table}: no single-column primary key")
                continue
            if not table.isidentifier():
                logger.warning(f"Skipping table {table}: name is not an identifier")
                continue

            fk_targets = {fk["from"]: fk["table"] for fk in foreign_keys[table]}
            fields: list[FieldSpec] = []
            for col in columns[table]:
                required = bool(col["notnull"]) and col["dflt_value"] is None and not col["pk"]
                if col["name"] in fk_targets:
                    fields.append(
                        RelationFieldSpec(
                            name=col["name"], target=fk_targets[col["name"]], required=required
                        )
                    )
                else:
                    fields.append(
                        ScalarFieldSpec(
                            name=col["name"],
                            scalar_type=_sqlite_type_to_scalar(col["type"] or ""),
                            required=required,
                        )
                    )
            fields.extend(many_fields[table])
            resources[table] = ResourceSpec(
                name=table, id_field=pk_columns[0]["name"], fields=fields
            )

        logger.info(f"Introspected {len(resources)} resources from {self.db_path}")
        self._resources = resources
        return resources

    def list_resources(self) -> list[ResourceSpec]:
        return list(self._load().values())

    def fields_of(self, resource_name: str) -> list[FieldSpec]:
        return list(self._load()[resource_name].fields)

    def identifier_field_of(self, resource_name: str) -> str:
        return self._load()[resource_name].id_field
