"""
Field formatter - maps submitted form values into store-native shapes.

Each field kind (scalar, relation, file) has a built-in handler; a field
may declare a custom formatter that takes precedence. Apart from storing
uploaded files, formatting has no side effects. Coercion problems are
collected per field so the validator can report them with every other
violation instead of failing on the first one.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from dazzle_admin.runtime.errors import FileStorageError
from dazzle_admin.runtime.file_storage import StorageBackend, StoredFile, UploadedBlob, matches_content_type
from dazzle_admin.runtime.logging import get_admin_logger
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.request_parser import FormValue, SubmittedForm
from dazzle_admin.specs.resource import (
    TEXT_SCALARS,
    BaseFieldSpec,
    FileFieldSpec,
    RelationFieldSpec,
    ResourceSpec,
    ScalarFieldSpec,
    ScalarType,
)

logger = get_admin_logger()

_TRUE_VALUES = frozenset({"true", "1", "on", "yes"})
_FALSE_VALUES = frozenset({"false", "0", "off", "no", ""})


# =============================================================================
# Directives
# =============================================================================


class _Unset:
    """Explicit "set to null" directive (distinct from a field being absent)."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class RelationChange:
    """
    Link/unlink directives for a relation field.

    ``unlink_all`` drops every existing link before ``link`` is applied, which
    gives replace semantics for to-many relations and clears to-one ones.
    """

    link: tuple[Any, ...] = ()
    unlink: tuple[Any, ...] = ()
    unlink_all: bool = False

    @property
    def is_link_only(self) -> bool:
        return not self.unlink and not self.unlink_all


@dataclass(frozen=True)
class RemoveFile:
    """Clear a file field; the stored artifact is deleted once the mutation succeeds."""

    key: str


class CoercionError(ValueError):
    """A submitted value cannot be converted to the field's type."""


@dataclass
class FormattedPayload:
    """
    Submitted values after per-field transformation.

    Attributes:
        values: Field name -> store-native value or directive
        missing: Required or custom-formatted fields that were not submitted
        coercion_errors: Field name -> conversion failure message
        stored_files: Artifacts persisted while formatting
        removed_files: Handles of artifacts to delete after a successful mutation
        form: The submitted form, kept for echoing back on failure
    """

    values: dict[str, Any] = field(default_factory=dict)
    missing: set[str] = field(default_factory=set)
    coercion_errors: dict[str, str] = field(default_factory=dict)
    stored_files: list[StoredFile] = field(default_factory=list)
    removed_files: list[str] = field(default_factory=list)
    form: SubmittedForm = field(default_factory=SubmittedForm)

    def echo(self) -> dict[str, Any]:
        """
        Everything that was submitted, for repopulating a form.

        Successfully formatted fields show their formatted value; fields
        that failed coercion (and keys matching no field) keep the raw value.
        """
        data = self.form.to_dict()
        for name, value in self.values.items():
            if name not in self.coercion_errors:
                data[name] = plain_value(value)
        return data


def plain_value(value: Any) -> Any:
    """Render a formatted value or directive as plain data."""
    if value is UNSET:
        return None
    if isinstance(value, RelationChange):
        return list(value.link)
    if isinstance(value, StoredFile):
        return value.filename
    if isinstance(value, RemoveFile):
        return None
    return value


# =============================================================================
# Scalar Coercion
# =============================================================================


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise CoercionError(f"Expected a boolean, got '{raw}'")


def _parse_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CoercionError(f"Invalid JSON: {exc.msg}") from exc


_SCALAR_PARSERS: dict[ScalarType, tuple[Callable[[str], Any], str]] = {
    ScalarType.INT: (int, "Expected an integer"),
    ScalarType.FLOAT: (float, "Expected a number"),
    ScalarType.DECIMAL: (Decimal, "Expected a decimal number"),
    ScalarType.DATE: (date.fromisoformat, "Expected a date (YYYY-MM-DD)"),
    ScalarType.DATETIME: (datetime.fromisoformat, "Expected a date and time (ISO 8601)"),
    ScalarType.UUID: (UUID, "Expected a UUID"),
}


def coerce_scalar(raw: str, scalar_type: ScalarType) -> Any:
    """
    Convert a submitted string into the scalar type's Python value.

    Raises:
        CoercionError: If the string cannot be converted
    """
    if scalar_type in (ScalarType.STR, ScalarType.TEXT):
        return raw
    if scalar_type == ScalarType.BOOL:
        return _parse_bool(raw)
    if scalar_type == ScalarType.JSON:
        return _parse_json(raw)

    parser, message = _SCALAR_PARSERS[scalar_type]
    try:
        return parser(raw.strip())
    except (ValueError, InvalidOperation) as exc:
        raise CoercionError(f"{message}, got '{raw}'") from exc


# =============================================================================
# Formatter
# =============================================================================

_MISSING = object()

FieldHandler = Callable[
    [BaseFieldSpec, tuple[FormValue, ...], bool, "FormattedPayload", str | None],
    Awaitable[Any],
]


class FieldFormatter:
    """
    Converts a submitted form into a ``FormattedPayload``.

    Built-in handlers are chosen by field kind; a field's own ``formatter``
    overrides them. Handlers return ``_MISSING`` to leave a field out.

    Example:
        formatter = FieldFormatter(registry, LocalStorageBackend("uploads"))
        payload = await formatter.format(request.form, post, is_create=True)
    """

    def __init__(self, registry: ResourceRegistry, storage: StorageBackend | None = None):
        self.registry = registry
        self.storage = storage
        self._handlers: dict[str, FieldHandler] = {
            "scalar": self._format_scalar,
            "relation": self._format_relation,
            "file": self._format_file,
        }

    async def format(
        self,
        form: SubmittedForm,
        resource: ResourceSpec,
        is_create: bool,
        removed_files: Mapping[str, str] | None = None,
    ) -> FormattedPayload:
        """
        Format every declared field of ``resource`` from ``form``.

        Keys that match no field are ignored. The identifier and read-only
        fields are never formatted.

        Raises:
            FileStorageError: If an uploaded file cannot be persisted. Files
                already stored for earlier fields are deleted first.
        """
        removed_files = removed_files or {}
        payload = FormattedPayload(form=form)

        try:
            for spec in resource.fields:
                await self._format_field(spec, form, resource, is_create, removed_files, payload)
        except FileStorageError:
            await self._discard(payload)
            raise

        return payload

    async def _format_field(
        self,
        spec: BaseFieldSpec,
        form: SubmittedForm,
        resource: ResourceSpec,
        is_create: bool,
        removed_files: Mapping[str, str],
        payload: FormattedPayload,
    ) -> None:
        name = spec.name
        if name == resource.id_field or spec.read_only:
            return

        submitted = name in form
        removal = removed_files.get(name)

        try:
            if spec.formatter is not None:
                value = await self._run_custom(spec, form.raw(name), is_create)
            elif submitted or removal is not None:
                handler = self._handlers[spec.kind]  # type: ignore[attr-defined]
                value = await handler(spec, form.all(name), is_create, payload, removal)
            else:
                value = _MISSING
        except CoercionError as exc:
            payload.coercion_errors[name] = str(exc)
            return

        if value is _MISSING:
            if not submitted and (spec.required or spec.formatter is not None):
                payload.missing.add(name)
            return
        payload.values[name] = value

    async def _discard(self, payload: FormattedPayload) -> None:
        """Delete artifacts already stored for a payload whose formatting failed."""
        if self.storage is None:
            return
        for stored in payload.stored_files:
            try:
                await self.storage.delete(stored.key)
            except FileStorageError as exc:
                logger.warning(f"Could not delete file {stored.key}: {exc}")
        payload.stored_files.clear()

    async def _run_custom(self, spec: BaseFieldSpec, raw: Any, is_create: bool) -> Any:
        assert spec.formatter is not None
        try:
            value = spec.formatter(raw, is_create)
            if asyncio.iscoroutine(value):
                value = await value
        except CoercionError:
            raise
        except ValueError as exc:
            raise CoercionError(str(exc) or "Invalid value") from exc

        if value is None and raw is None:
            return _MISSING
        if is_create and isinstance(value, RelationChange) and not value.is_link_only:
            raise CoercionError("Only links can be set when creating a record")
        return value

    # -------------------------------------------------------------------------
    # Scalars
    # -------------------------------------------------------------------------

    async def _format_scalar(
        self,
        spec: BaseFieldSpec,
        values: tuple[FormValue, ...],
        is_create: bool,
        payload: FormattedPayload,
        removal: str | None,
    ) -> Any:
        assert isinstance(spec, ScalarFieldSpec)
        strings = [v for v in values if isinstance(v, str)]
        if len(strings) != len(values):
            raise CoercionError("File uploads are not accepted for this field")

        # Checkbox pattern: hidden "false" input followed by the checkbox value
        if spec.scalar_type == ScalarType.BOOL:
            parsed = [_parse_bool(v) for v in strings]
            return any(parsed)

        raw = strings[-1] if strings else ""
        if raw == "" or (raw.strip() == "" and spec.scalar_type not in TEXT_SCALARS):
            if spec.required:
                # Left for the validator to report
                return "" if spec.scalar_type in TEXT_SCALARS else None
            return UNSET

        return coerce_scalar(raw, spec.scalar_type)

    # -------------------------------------------------------------------------
    # Relations
    # -------------------------------------------------------------------------

    async def _format_relation(
        self,
        spec: BaseFieldSpec,
        values: tuple[FormValue, ...],
        is_create: bool,
        payload: FormattedPayload,
        removal: str | None,
    ) -> Any:
        assert isinstance(spec, RelationFieldSpec)
        target = self.registry.get(spec.target)
        if target is None:
            raise CoercionError(f"Unknown related resource {spec.target}")

        raw_ids: list[str] = []
        for value in values:
            if not isinstance(value, str):
                raise CoercionError("File uploads are not accepted for this field")
            raw_ids.extend(part.strip() for part in value.split(",") if part.strip())

        try:
            ids = tuple(dict.fromkeys(target.coerce_id(raw) for raw in raw_ids))
        except ValueError as exc:
            raise CoercionError(f"Invalid {target.name} identifier: {exc}") from exc

        if not spec.many and len(ids) > 1:
            raise CoercionError("Only one related record can be selected")

        if is_create:
            return RelationChange(link=ids)
        if spec.many:
            return RelationChange(link=ids, unlink_all=True)
        if not ids:
            return RelationChange(unlink_all=True)
        return RelationChange(link=ids)

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def _format_file(
        self,
        spec: BaseFieldSpec,
        values: tuple[FormValue, ...],
        is_create: bool,
        payload: FormattedPayload,
        removal: str | None,
    ) -> Any:
        assert isinstance(spec, FileFieldSpec)
        blobs = [v for v in values if isinstance(v, UploadedBlob) and v.filename and v.size]

        if len(blobs) > 1:
            raise CoercionError("Only one file can be uploaded")

        if blobs:
            blob = blobs[0]
            if blob.size > spec.max_size:
                raise CoercionError(
                    f"File too large: {blob.size} bytes (maximum {spec.max_size} bytes)"
                )
            if spec.allowed_types and not matches_content_type(
                blob.content_type, spec.allowed_types
            ):
                raise CoercionError(f"File type not allowed: {blob.content_type}")
            if self.storage is None:
                raise CoercionError("File uploads are not enabled")

            stored = await self.storage.store(blob, path_prefix=spec.name)
            payload.stored_files.append(stored)
            if removal is not None and not is_create:
                payload.removed_files.append(removal)
            return stored

        if removal is not None and not is_create:
            payload.removed_files.append(removal)
            return RemoveFile(key=removal)

        # Nothing uploaded: keep whatever is stored
        return _MISSING
