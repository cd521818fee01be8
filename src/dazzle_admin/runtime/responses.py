"""
Operation results and the response builder.

Every request resolves to exactly one ``OperationResult``: a redirect, a
set of rendered props (optionally with a message, an error or validation
details) or not-found. The HTTP layer turns these into responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from dazzle_admin.runtime.errors import StoreConstraintError, StoreError, StoreUnavailableError
from dazzle_admin.runtime.messages import CREATED, DELETED, UPDATED, StatusMessage
from dazzle_admin.runtime.request_parser import AdminAction
from dazzle_admin.runtime.store import FindResult
from dazzle_admin.runtime.validator import ValidationResult

if TYPE_CHECKING:
    from dazzle_admin.runtime.dispatcher import DispatchOutcome
    from dazzle_admin.runtime.field_formatter import FormattedPayload
    from dazzle_admin.runtime.props import PropsBuilder
    from dazzle_admin.runtime.request_parser import AdminRequest

VALIDATION_FAILED = "Validation failed"
GENERIC_ERROR = "An unexpected error occurred"
STORE_UNAVAILABLE = "The data store is currently unavailable"

# Human messages shown outside development, by constraint type
_CONSTRAINT_MESSAGES = {
    "unique": "A record with this value already exists",
    "foreign_key": "This record references, or is referenced by, other records",
    "not_null": "A required value is missing",
    "not_found": "The record does not exist",
    "integrity": "The data store rejected this change",
}


def store_error_message(exc: StoreError, debug: bool = False) -> str:
    """
    Human-readable message for a store error.

    In development the store's own message is shown; elsewhere it is replaced
    by a generic message per constraint type (naming the field when known).
    """
    if debug:
        return str(exc)
    if not isinstance(exc, StoreConstraintError):
        return STORE_UNAVAILABLE
    message = _CONSTRAINT_MESSAGES.get(exc.constraint_type, _CONSTRAINT_MESSAGES["integrity"])
    if exc.field:
        message = f"{message} ({exc.field})"
    return message


# =============================================================================
# Operation Results
# =============================================================================


@dataclass(frozen=True)
class Redirect:
    """Navigate the client to ``destination`` (path plus ``?message=<json>``)."""

    destination: str
    message: StatusMessage | None = None

    @property
    def location(self) -> str:
        """The destination with its query value percent-encoded for a Location header."""
        path, sep, query = self.destination.partition("?message=")
        if not sep:
            return self.destination
        return f"{path}?message={quote(query, safe='')}"


@dataclass(frozen=True)
class Rendered:
    """Props for the list/detail view plus an optional message, error or validation."""

    props: dict[str, Any]
    message: StatusMessage | None = None
    error: str | None = None
    validation: ValidationResult | None = None
    status_code: int | None = field(default=None, compare=False)

    @property
    def failed(self) -> bool:
        return self.error is not None or bool(self.validation)

    @property
    def http_status(self) -> int:
        if self.status_code is not None:
            return self.status_code
        return 422 if self.failed else 200

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"props": self.props}
        if self.message is not None:
            body["message"] = self.message.to_dict()
        if self.error is not None:
            body["error"] = self.error
        if self.validation:
            body["validation"] = self.validation.to_list()
        return body


@dataclass(frozen=True)
class NotFound:
    """The resource or record does not exist."""

    reason: str | None = field(default=None, compare=False)


OperationResult = Redirect | Rendered | NotFound


# =============================================================================
# Response Builder
# =============================================================================


class ResponseBuilder:
    """
    Assembles operation results.

    Destinations follow ``<base_path>/<resource-lower>[/<id>]`` and carry
    the status message as compact JSON in the ``message`` query parameter.
    """

    def __init__(self, base_path: str):
        self.base_path = base_path

    def destination(
        self,
        resource_slug: str,
        record_id: Any = None,
        message: StatusMessage | None = None,
    ) -> str:
        path = f"{self.base_path}/{resource_slug}"
        if record_id is not None:
            path = f"{path}/{quote(str(record_id), safe='')}"
        if message is not None:
            path = f"{path}?message={message.to_json()}"
        return path

    def redirect(
        self,
        resource_slug: str,
        record_id: Any = None,
        message: StatusMessage | None = None,
    ) -> Redirect:
        return Redirect(
            destination=self.destination(resource_slug, record_id, message), message=message
        )

    def rendered(
        self,
        props: dict[str, Any],
        message: StatusMessage | None = None,
    ) -> Rendered:
        return Rendered(props=props, message=message)

    def validation_failed(self, props: dict[str, Any], result: ValidationResult) -> Rendered:
        return Rendered(props=props, error=VALIDATION_FAILED, validation=result)

    def store_failed(
        self, props: dict[str, Any], error: str, status_code: int | None = None
    ) -> Rendered:
        return Rendered(props=props, error=error, status_code=status_code)

    def not_found(self, reason: str | None = None) -> NotFound:
        return NotFound(reason=reason)

    def unexpected(self, props: dict[str, Any] | None = None) -> Rendered:
        return Rendered(props=props or {}, error=GENERIC_ERROR, status_code=500)

    async def build(
        self,
        request: AdminRequest,
        outcome: DispatchOutcome,
        props: PropsBuilder,
        payload: FormattedPayload | None = None,
        debug: bool = False,
    ) -> OperationResult:
        """
        Turn a dispatch outcome into the request's operation result.

        - Create: redirect to the new record.
        - Update: redirect to the list when requested, otherwise the refreshed
          detail props with a message.
        - Delete: redirect to the list. Delete-many: refreshed list props.
        - List: list props with any carried message.
        - Store error: props of the submitted view with the form echoed back,
          served as 503 when the store is unavailable.
        """
        resource = outcome.resource
        action = outcome.action

        if outcome.error is not None:
            error = store_error_message(outcome.error, debug)
            status = 503 if isinstance(outcome.error, StoreUnavailableError) else None
            if action is AdminAction.LIST:
                empty = await props.list_props(resource, request.query, FindResult())
                return self.store_failed(empty, error, status)
            if action is AdminAction.DELETE_MANY:
                listed = await props.list_props(resource, request.query)
                return self.store_failed(listed, error, status)
            echoed = payload.echo() if payload is not None else {}
            return self.store_failed(
                props.detail_props(resource, echoed, request.record_id, from_form=True),
                error,
                status,
            )

        if action is AdminAction.CREATE:
            return self.redirect(resource.slug, outcome.record_id, CREATED)

        if action is AdminAction.UPDATE:
            if request.redirect:
                return self.redirect(resource.slug, message=UPDATED)
            return self.rendered(
                props.detail_props(resource, outcome.record, outcome.record_id), UPDATED
            )

        if action is AdminAction.DELETE:
            return self.redirect(resource.slug, message=DELETED)

        if action is AdminAction.DELETE_MANY:
            return self.rendered(await props.list_props(resource, request.query), DELETED)

        return self.rendered(
            await props.list_props(resource, request.query, outcome.found), request.message
        )
