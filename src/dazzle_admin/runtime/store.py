"""
Data store - the persistence boundary of the admin.

``DataStore`` is the protocol the dispatcher talks to. ``SQLiteDataStore``
implements it over the stdlib ``sqlite3`` driver: one connection per
operation, committed or rolled back as a unit, with foreign keys enforced.
Formatted payload directives (``UNSET``, ``RelationChange``, ``StoredFile``,
``RemoveFile``) are translated into column values and join-table rows here.
Driver exceptions never leave this module; they are wrapped into the
``StoreError`` hierarchy.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from dazzle_admin.runtime.errors import (
    StoreConstraintError,
    StoreError,
    StoreUnavailableError,
)
from dazzle_admin.runtime.field_formatter import UNSET, RelationChange, RemoveFile
from dazzle_admin.runtime.file_storage import StoredFile
from dazzle_admin.runtime.logging import get_store_logger
from dazzle_admin.runtime.query import ListQuery, quote_identifier
from dazzle_admin.specs.resource import (
    BaseFieldSpec,
    FileFieldSpec,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

logger = get_store_logger()

RecordId = int | str


@dataclass
class FindResult:
    """A page of records plus the total number of matches."""

    records: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


@runtime_checkable
class DataStore(Protocol):
    """Operations the admin performs against the underlying store."""

    async def find(self, resource: ResourceSpec, query: ListQuery) -> FindResult: ...

    async def get(self, resource: ResourceSpec, record_id: RecordId) -> dict[str, Any] | None: ...

    async def insert(self, resource: ResourceSpec, data: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, resource: ResourceSpec, record_id: RecordId, data: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def remove(self, resource: ResourceSpec, record_id: RecordId) -> int: ...

    async def remove_many(self, resource: ResourceSpec, ids: Sequence[RecordId]) -> int: ...


# =============================================================================
# Constraint Errors
# =============================================================================


def _parse_constraint_error(err: str) -> tuple[str, str | None]:
    """Extract the constraint type and field from a SQLite integrity message.

    Returns:
        (constraint_type, field_name_or_none)
    """
    # "UNIQUE constraint failed: Post.slug"
    if "UNIQUE constraint failed:" in err:
        parts = err.split("UNIQUE constraint failed:")[-1].strip()
        field_name = parts.split(",")[0].split(".")[-1].strip() if parts else None
        return "unique", field_name or None

    # "NOT NULL constraint failed: Post.title"
    if "NOT NULL constraint failed:" in err:
        parts = err.split("NOT NULL constraint failed:")[-1].strip()
        field_name = parts.split(".")[-1].strip() if parts else None
        return "not_null", field_name or None

    if "FOREIGN KEY constraint failed" in err:
        return "foreign_key", None

    return "integrity", None


def _constraint_error(exc: sqlite3.IntegrityError, table: str) -> StoreConstraintError:
    ctype, field_name = _parse_constraint_error(str(exc))
    if ctype == "unique":
        msg = (
            f"A {table} with this {field_name} already exists"
            if field_name
            else f"Duplicate value violates unique constraint on {table}"
        )
    elif ctype == "not_null":
        msg = (
            f"A value for '{field_name}' is required on {table}"
            if field_name
            else f"A required value is missing on {table}"
        )
    elif ctype == "foreign_key":
        msg = f"Referenced record does not exist or is still referenced ({table})"
    else:
        msg = f"Integrity constraint violated on {table}: {exc}"
    return StoreConstraintError(msg, field=field_name, constraint_type=ctype)


# =============================================================================
# Value Conversion
# =============================================================================


def _scalar_type_to_sqlite(scalar_type: ScalarType) -> str:
    """Map scalar types to SQLite column types."""
    mapping: dict[ScalarType, str] = {
        ScalarType.STR: "TEXT",
        ScalarType.TEXT: "TEXT",
        ScalarType.INT: "INTEGER",
        ScalarType.FLOAT: "REAL",
        ScalarType.DECIMAL: "NUMERIC",
        ScalarType.BOOL: "INTEGER",  # 0/1
        ScalarType.DATE: "TEXT",  # ISO format
        ScalarType.DATETIME: "TEXT",  # ISO format
        ScalarType.UUID: "TEXT",
        ScalarType.JSON: "TEXT",
    }
    return mapping.get(scalar_type, "TEXT")


def _python_to_sqlite(value: Any, spec: BaseFieldSpec | None = None) -> Any:
    """Convert a formatted value (or directive) to a SQLite-compatible value."""
    if value is None or value is UNSET or isinstance(value, RemoveFile):
        return None
    if isinstance(value, StoredFile):
        return value.key
    if isinstance(value, RelationChange):
        return value.link[0] if value.link else None
    if isinstance(spec, ScalarFieldSpec) and spec.scalar_type == ScalarType.JSON:
        return json.dumps(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def _sqlite_to_python(value: Any, spec: BaseFieldSpec | None = None) -> Any:
    """Convert a SQLite value back to the field's Python type."""
    if value is None or not isinstance(spec, ScalarFieldSpec):
        return value

    scalar = spec.scalar_type
    try:
        if scalar == ScalarType.BOOL:
            return bool(value)
        if scalar == ScalarType.DECIMAL:
            return Decimal(str(value))
        if scalar == ScalarType.DATE and isinstance(value, str):
            return date.fromisoformat(value)
        if scalar == ScalarType.DATETIME and isinstance(value, str):
            return datetime.fromisoformat(value)
        if scalar == ScalarType.JSON and isinstance(value, str):
            return json.loads(value)
        if scalar == ScalarType.UUID and isinstance(value, str):
            return UUID(value)
    except ValueError:
        # Rows written outside the admin may not follow the declared type
        logger.debug(f"Leaving unparseable {scalar} value {value!r} for {spec.name} as stored")
    return value


# =============================================================================
# SQLite Store
# =============================================================================


class SQLiteDataStore:
    """
    ``DataStore`` backed by a SQLite database file.

    To-one relations are foreign-key columns on the resource table; to-many
    relations are rows in the field's join table. Integer identifiers are
    assigned by SQLite; other identifiers get a UUID4 when not supplied.

    Example:
        store = SQLiteDataStore(".dazzle/admin.db")
        store.create_tables(registry)
        record = await store.insert(post, {"title": "Hello"})
    """

    def __init__(self, db_path: str | Path = ".dazzle/admin.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Open a connection for one operation.

        Commits on success, rolls back on any exception. Driver errors are
        re-raised as ``StoreError`` subclasses.

        Yields:
            SQLite connection
        """
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _operation(self, resource: ResourceSpec, name: str) -> Iterator[sqlite3.Connection]:
        start = time.perf_counter()
        try:
            with self.connection() as conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise _constraint_error(exc, resource.name) from exc
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"{name} on {resource.name} failed: {exc}") from exc
        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"{name} {resource.name} ({latency_ms:.1f}ms)")

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_tables(self, resources: Iterable[ResourceSpec]) -> None:
        """
        Create tables (and join tables) for resources if they don't exist.

        Raises:
            StoreError: If the schema cannot be created
        """
        resources = list(resources)
        by_name = {r.name.lower(): r for r in resources}
        statements: list[str] = []
        for resource in resources:
            statements.append(self._table_sql(resource, by_name))
            for spec in resource.fields:
                if isinstance(spec, RelationFieldSpec) and spec.many:
                    statements.append(self._join_table_sql(resource, spec, by_name))

        try:
            with self.connection() as conn:
                for sql in statements:
                    conn.execute(sql)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot create tables: {exc}") from exc
        logger.info(f"Created tables for {len(resources)} resources in {self.db_path}")

    def _id_column_type(self, resource: ResourceSpec | None) -> str:
        return "INTEGER" if resource is not None and resource.id_is_int else "TEXT"

    def _table_sql(self, resource: ResourceSpec, by_name: dict[str, ResourceSpec]) -> str:
        columns: list[str] = []
        constraints: list[str] = []

        if resource.identifier is None:
            columns.append(f"{quote_identifier(resource.id_field)} TEXT PRIMARY KEY")

        for spec in resource.column_fields:
            col = quote_identifier(spec.name)
            if spec.name == resource.id_field:
                if resource.id_is_int:
                    columns.append(f"{col} INTEGER PRIMARY KEY AUTOINCREMENT")
                else:
                    columns.append(f"{col} TEXT PRIMARY KEY")
                continue

            if isinstance(spec, ScalarFieldSpec):
                col_type = _scalar_type_to_sqlite(spec.scalar_type)
            elif isinstance(spec, RelationFieldSpec):
                target = by_name.get(spec.target.lower())
                col_type = self._id_column_type(target)
                if target is not None:
                    constraints.append(
                        f"FOREIGN KEY ({col}) REFERENCES {quote_identifier(target.name)}"
                        f"({quote_identifier(target.id_field)})"
                    )
            else:
                col_type = "TEXT"

            parts = [col, col_type]
            if spec.required and not isinstance(spec, FileFieldSpec):
                parts.append("NOT NULL")
            columns.append(" ".join(parts))

        table = quote_identifier(resource.name)
        return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns + constraints)})"

    def _join_table_sql(
        self,
        resource: ResourceSpec,
        spec: RelationFieldSpec,
        by_name: dict[str, ResourceSpec],
    ) -> str:
        through, source_col, target_col = self._join_columns(spec)
        target = by_name.get(spec.target.lower())
        target_ref = (
            f", FOREIGN KEY ({target_col}) REFERENCES {quote_identifier(target.name)}"
            f"({quote_identifier(target.id_field)}) ON DELETE CASCADE"
            if target is not None
            else ""
        )
        return (
            f"CREATE TABLE IF NOT EXISTS {through} ("
            f"{source_col} {self._id_column_type(resource)} NOT NULL, "
            f"{target_col} {self._id_column_type(target)} NOT NULL, "
            f"PRIMARY KEY ({source_col}, {target_col}), "
            f"FOREIGN KEY ({source_col}) REFERENCES {quote_identifier(resource.name)}"
            f"({quote_identifier(resource.id_field)}) ON DELETE CASCADE"
            f"{target_ref})"
        )

    @staticmethod
    def _join_columns(spec: RelationFieldSpec) -> tuple[str, str, str]:
        if not (spec.through and spec.source_column and spec.target_column):
            raise StoreError(
                f"To-many relation '{spec.name}' needs through, source_column and target_column"
            )
        return (
            quote_identifier(spec.through),
            quote_identifier(spec.source_column),
            quote_identifier(spec.target_column),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _many_relations(resource: ResourceSpec) -> list[RelationFieldSpec]:
        return [f for f in resource.fields if isinstance(f, RelationFieldSpec) and f.many]

    def _split_data(
        self, resource: ResourceSpec, data: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, RelationChange]]:
        """Separate column values from to-many relation changes."""
        columns: dict[str, Any] = {}
        relations: dict[str, RelationChange] = {}
        for name, value in data.items():
            spec = resource.get_field(name)
            if spec is None:
                continue
            if isinstance(spec, RelationFieldSpec) and spec.many:
                if isinstance(value, RelationChange):
                    relations[name] = value
                continue
            columns[name] = _python_to_sqlite(value, spec)
        return columns, relations

    def _row_to_record(self, resource: ResourceSpec, row: sqlite3.Row) -> dict[str, Any]:
        # Identifiers stay as stored; they are compared against coerced ids
        return {
            key: row[key]
            if key == resource.id_field
            else _sqlite_to_python(row[key], resource.get_field(key))
            for key in row.keys()
        }

    def _fetch(
        self, conn: sqlite3.Connection, resource: ResourceSpec, record_id: RecordId
    ) -> dict[str, Any] | None:
        table = quote_identifier(resource.name)
        id_col = quote_identifier(resource.id_field)
        row = conn.execute(f"SELECT * FROM {table} WHERE {id_col} = ?", (record_id,)).fetchone()
        if row is None:
            return None

        record = self._row_to_record(resource, row)
        for spec in self._many_relations(resource):
            through, source_col, target_col = self._join_columns(spec)
            linked = conn.execute(
                f"SELECT {target_col} FROM {through} WHERE {source_col} = ? ORDER BY {target_col}",
                (record_id,),
            ).fetchall()
            record[spec.name] = [r[0] for r in linked]
        return record

    def _apply_relations(
        self,
        conn: sqlite3.Connection,
        resource: ResourceSpec,
        record_id: RecordId,
        relations: dict[str, RelationChange],
    ) -> None:
        for name, change in relations.items():
            spec = resource.get_field(name)
            assert isinstance(spec, RelationFieldSpec)
            through, source_col, target_col = self._join_columns(spec)

            if change.unlink_all:
                conn.execute(f"DELETE FROM {through} WHERE {source_col} = ?", (record_id,))
            elif change.unlink:
                placeholders = ", ".join("?" for _ in change.unlink)
                conn.execute(
                    f"DELETE FROM {through} WHERE {source_col} = ? "
                    f"AND {target_col} IN ({placeholders})",
                    (record_id, *change.unlink),
                )
            conn.executemany(
                f"INSERT OR IGNORE INTO {through} ({source_col}, {target_col}) VALUES (?, ?)",
                [(record_id, target_id) for target_id in change.link],
            )

    def _search_clause(self, resource: ResourceSpec, search: str | None) -> tuple[str, list[Any]]:
        fields = [name for name in resource.searchable_fields if resource.get_field(name)]
        if not search or not fields:
            return "", []
        pattern = "%" + search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        clause = " OR ".join(f"{quote_identifier(name)} LIKE ? ESCAPE '\\'" for name in fields)
        return f" WHERE ({clause})", [pattern] * len(fields)

    def _sort_column(self, resource: ResourceSpec, query: ListQuery) -> tuple[str, str]:
        columns = {f.name for f in resource.column_fields} | {resource.id_field}
        if query.sort_column in columns:
            return query.sort_column, query.sort_direction
        if query.sort_column:
            logger.debug(f"Ignoring unknown sort column {query.sort_column!r} for {resource.name}")
        default = resource.list_view.default_sort
        if default in columns:
            return default, resource.list_view.default_direction
        return resource.id_field, "asc"

    # -------------------------------------------------------------------------
    # DataStore
    # -------------------------------------------------------------------------

    async def find(self, resource: ResourceSpec, query: ListQuery) -> FindResult:
        """
        List records with search, sort and pagination.

        Returns:
            FindResult with the requested page and the total match count
        """
        table = quote_identifier(resource.name)
        where, params = self._search_clause(resource, query.search)
        sort_column, direction = self._sort_column(resource, query)

        with self._operation(resource, "find") as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM {table}{where} "
                f"ORDER BY {quote_identifier(sort_column)} {direction.upper()} "
                "LIMIT ? OFFSET ?",
                [*params, query.items_per_page, query.offset],
            ).fetchall()

        return FindResult(records=[self._row_to_record(resource, row) for row in rows], total=total)

    async def get(self, resource: ResourceSpec, record_id: RecordId) -> dict[str, Any] | None:
        """Read one record (with to-many relations as identifier lists)."""
        with self._operation(resource, "get") as conn:
            return self._fetch(conn, resource, record_id)

    async def insert(self, resource: ResourceSpec, data: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a record and return it as stored, identifier included.

        Raises:
            StoreConstraintError: On unique, not-null or foreign-key violations
        """
        columns, relations = self._split_data(resource, data)
        if columns.get(resource.id_field) is None:
            columns.pop(resource.id_field, None)
            if not resource.id_is_int:
                columns[resource.id_field] = str(uuid.uuid4())

        table = quote_identifier(resource.name)
        if columns:
            names = ", ".join(quote_identifier(k) for k in columns)
            placeholders = ", ".join("?" for _ in columns)
            sql = f"INSERT INTO {table} ({names}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        with self._operation(resource, "insert") as conn:
            cursor = conn.execute(sql, list(columns.values()))
            record_id = columns.get(resource.id_field, cursor.lastrowid)
            self._apply_relations(conn, resource, record_id, relations)
            record = self._fetch(conn, resource, record_id)

        if record is None:
            raise StoreUnavailableError(f"Inserted {resource.name} could not be read back")
        return record

    async def update(
        self, resource: ResourceSpec, record_id: RecordId, data: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        Update a record.

        Returns:
            The updated record, or None if no record has this identifier

        Raises:
            StoreConstraintError: On unique, not-null or foreign-key violations
        """
        columns, relations = self._split_data(resource, data)
        columns.pop(resource.id_field, None)
        table = quote_identifier(resource.name)
        id_col = quote_identifier(resource.id_field)

        with self._operation(resource, "update") as conn:
            if columns:
                set_clause = ", ".join(f"{quote_identifier(k)} = ?" for k in columns)
                cursor = conn.execute(
                    f"UPDATE {table} SET {set_clause} WHERE {id_col} = ?",
                    [*columns.values(), record_id],
                )
                matched = cursor.rowcount > 0
            else:
                matched = (
                    conn.execute(f"SELECT 1 FROM {table} WHERE {id_col} = ?", (record_id,)).fetchone()
                    is not None
                )
            if not matched:
                return None
            self._apply_relations(conn, resource, record_id, relations)
            return self._fetch(conn, resource, record_id)

    async def remove(self, resource: ResourceSpec, record_id: RecordId) -> int:
        """Delete one record; returns the number of rows removed (0 or 1)."""
        return await self.remove_many(resource, [record_id])

    async def remove_many(self, resource: ResourceSpec, ids: Sequence[RecordId]) -> int:
        """
        Delete every record whose identifier is in ``ids``.

        Identifiers that match nothing are ignored.

        Returns:
            Number of rows removed
        """
        if not ids:
            return 0
        table = quote_identifier(resource.name)
        id_col = quote_identifier(resource.id_field)
        placeholders = ", ".join("?" for _ in ids)

        with self._operation(resource, "remove") as conn:
            for spec in self._many_relations(resource):
                through, source_col, _ = self._join_columns(spec)
                conn.execute(
                    f"DELETE FROM {through} WHERE {source_col} IN ({placeholders})", list(ids)
                )
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE {id_col} IN ({placeholders})", list(ids)
            )
            return cursor.rowcount
