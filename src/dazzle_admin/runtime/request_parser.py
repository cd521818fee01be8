"""
Request parser - turns a raw HTTP request into a typed admin request.

The parser is framework-neutral: the HTTP layer hands over a ``RawRequest``
(method, path, query string, decoded form items, body) and receives an
``AdminRequest`` envelope. Control fields submitted with forms
(``__admin_action``, ``__admin_redirect``, ``__admin_remove:<field>``) are
lifted out of the domain values into explicit envelope attributes.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import parse_qsl, unquote

from dazzle_admin.runtime.config import ITEMS_PER_PAGE
from dazzle_admin.runtime.errors import InvalidRequestError
from dazzle_admin.runtime.file_storage import UploadedBlob
from dazzle_admin.runtime.logging import get_admin_logger
from dazzle_admin.runtime.messages import StatusMessage
from dazzle_admin.runtime.query import ListQuery
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.specs.resource import ResourceSpec

logger = get_admin_logger()

ACTION_KEY = "__admin_action"
REDIRECT_KEY = "__admin_redirect"
REMOVE_FILE_PREFIX = "__admin_remove:"
NEW_MARKER = "new"

_TRUTHY = frozenset({"true", "1", "on", "yes"})

FormValue = str | UploadedBlob


class FormAction(StrEnum):
    """Action requested by a submitted form."""

    SAVE = "save"
    DELETE = "delete"


class AdminAction(StrEnum):
    """The operation a request dispatches against the store."""

    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DELETE_MANY = "delete_many"

    @property
    def is_mutation(self) -> bool:
        return self is not AdminAction.LIST


@dataclass(frozen=True)
class RawRequest:
    """A request as received by the HTTP layer."""

    method: str
    path: str
    query_string: str = ""
    form_items: tuple[tuple[str, FormValue], ...] = ()
    body: bytes = b""


@dataclass(frozen=True)
class SubmittedForm:
    """Domain field values decoded from a form body, keyed by field name."""

    values: Mapping[str, tuple[FormValue, ...]] = field(default_factory=dict)

    @classmethod
    def from_items(cls, items: Iterable[tuple[str, FormValue]]) -> SubmittedForm:
        values: dict[str, list[FormValue]] = {}
        for key, value in items:
            values.setdefault(key, []).append(value)
        return cls({k: tuple(v) for k, v in values.items()})

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def __len__(self) -> int:
        return len(self.values)

    def all(self, name: str) -> tuple[FormValue, ...]:
        return self.values.get(name, ())

    def last(self, name: str) -> FormValue | None:
        """The last submitted value (later inputs override earlier ones)."""
        vals = self.values.get(name)
        return vals[-1] if vals else None

    def raw(self, name: str) -> Any:
        """Single value, list of values, or None: what a custom formatter receives."""
        vals = self.values.get(name)
        if not vals:
            return None
        return vals[0] if len(vals) == 1 else list(vals)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly echo of the form (uploads appear as their filename)."""
        result: dict[str, Any] = {}
        for name, vals in self.values.items():
            plain = [v.filename if isinstance(v, UploadedBlob) else v for v in vals]
            result[name] = plain[0] if len(plain) == 1 else plain
        return result


@dataclass(frozen=True)
class AdminRequest:
    """
    Typed request envelope.

    Attributes:
        method: HTTP method (upper case)
        resource: Matched resource, or None when the segment is unknown
        resource_segment: Raw first path segment after the base path
        record_id: Identifier coerced to the resource's id type
        invalid_id: A second segment was present but not a valid identifier
        is_new: The second segment is the "new" marker
        form_action: Requested form action (None when no form was sent)
        redirect: The caller asked for a redirect instead of rendered props
        query: List query (search, sort, pagination)
        message: Status message carried over from a redirect
        form: Domain field values
        removed_files: File field -> stored handle to remove
        ids: Identifiers decoded from a DELETE body
    """

    method: str
    resource: ResourceSpec | None = None
    resource_segment: str | None = None
    record_id: int | str | None = None
    invalid_id: bool = False
    is_new: bool = False
    form_action: FormAction | None = None
    redirect: bool = False
    query: ListQuery = field(default_factory=ListQuery)
    message: StatusMessage | None = None
    form: SubmittedForm = field(default_factory=SubmittedForm)
    removed_files: Mapping[str, str] = field(default_factory=dict)
    ids: tuple[int | str, ...] = ()

    @property
    def action(self) -> AdminAction:
        """The store operation this request maps to."""
        if self.method == "DELETE":
            return AdminAction.DELETE_MANY
        if self.method != "POST":
            return AdminAction.LIST
        if self.record_id is not None:
            if self.form_action is FormAction.DELETE:
                return AdminAction.DELETE
            return AdminAction.UPDATE
        return AdminAction.CREATE

    @property
    def has_domain_values(self) -> bool:
        return len(self.form) > 0 or bool(self.removed_files)


def _is_truthy(value: FormValue | None) -> bool:
    return isinstance(value, str) and value.strip().lower() in _TRUTHY


def split_path(path: str, base_path: str) -> list[str] | None:
    """
    Path segments following ``base_path``, or None if the path is outside it.

    Example:
        split_path("/admin/Post/5", "/admin") -> ["Post", "5"]
    """
    path = path.split("?", 1)[0]
    if base_path:
        if path != base_path and not path.startswith(base_path + "/"):
            return None
        path = path[len(base_path) :]
    return [unquote(segment) for segment in path.split("/") if segment]


def _decode_message(params: Mapping[str, str]) -> StatusMessage | None:
    raw = params.get("message")
    if not raw:
        return None
    try:
        return StatusMessage.from_json(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed status message: {raw[:200]!r}")
        return None


def _decode_ids(body: bytes, resource: ResourceSpec) -> tuple[int | str, ...]:
    try:
        decoded = json.loads(body or b"[]")
    except ValueError as exc:
        raise InvalidRequestError(f"Request body must be a JSON array: {exc}") from exc
    if not isinstance(decoded, list):
        raise InvalidRequestError("Request body must be a JSON array of identifiers")
    try:
        return tuple(resource.coerce_id(raw) for raw in decoded)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(f"Invalid identifier in request body: {exc}") from exc


def parse_request(
    raw: RawRequest,
    base_path: str,
    registry: ResourceRegistry,
    *,
    items_per_page: int = ITEMS_PER_PAGE,
    max_items_per_page: int = 100,
) -> AdminRequest:
    """
    Parse a raw request into an ``AdminRequest``.

    - First path segment: resource (case-insensitive); unknown segments
      leave ``resource`` as None so the caller can answer not-found.
    - Second segment: record identifier, unless it is the "new" marker.
    - Form control keys become ``form_action``, ``redirect`` and
      ``removed_files``; the identifier field is never read from the form.
    - DELETE bodies are decoded as a JSON array of identifiers.

    Raises:
        InvalidRequestError: If a DELETE body is not a JSON array of identifiers
    """
    method = raw.method.upper()
    params = dict(parse_qsl(raw.query_string, keep_blank_values=True))
    segments = split_path(raw.path, base_path) or []

    query = ListQuery.from_params(params, items_per_page, max_items_per_page)
    message = _decode_message(params)

    resource_segment = segments[0] if segments else None
    resource = registry.get(resource_segment) if resource_segment else None
    if resource is None:
        return AdminRequest(
            method=method, resource_segment=resource_segment, query=query, message=message
        )

    record_id: int | str | None = None
    invalid_id = False
    is_new = len(segments) > 1 and segments[1] == NEW_MARKER
    if len(segments) > 1 and not is_new:
        try:
            record_id = resource.coerce_id(segments[1])
        except ValueError:
            invalid_id = True
    if len(segments) > 2:
        invalid_id = True

    form_action: FormAction | None = None
    redirect = False
    removed_files: dict[str, str] = {}
    domain_items: list[tuple[str, FormValue]] = []
    for key, value in raw.form_items:
        if key == ACTION_KEY:
            form_action = (
                FormAction.DELETE
                if isinstance(value, str) and value.lower() == FormAction.DELETE
                else FormAction.SAVE
            )
        elif key == REDIRECT_KEY:
            redirect = _is_truthy(value)
        elif key.startswith(REMOVE_FILE_PREFIX):
            if isinstance(value, str) and value:
                removed_files[key[len(REMOVE_FILE_PREFIX) :]] = value
        elif key == resource.id_field:
            continue
        else:
            domain_items.append((key, value))

    if method == "POST" and form_action is None:
        form_action = FormAction.SAVE

    ids = _decode_ids(raw.body, resource) if method == "DELETE" else ()

    return AdminRequest(
        method=method,
        resource=resource,
        resource_segment=resource_segment,
        record_id=record_id,
        invalid_id=invalid_id,
        is_new=is_new,
        form_action=form_action,
        redirect=redirect,
        query=query,
        message=message,
        form=SubmittedForm.from_items(domain_items),
        removed_files=removed_files,
        ids=ids,
    )
