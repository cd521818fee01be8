"""
Admin router - the request pipeline.

Wires the parser, formatter, validator, dispatcher and response builder
together and draws the error boundary: every request produces exactly one
``OperationResult``. Outside development, failures become rendered error
props; in development they are re-raised for full diagnostics.
"""

from __future__ import annotations

import logging

from dazzle_admin.runtime.config import AdminConfig
from dazzle_admin.runtime.dispatcher import OperationDispatcher
from dazzle_admin.runtime.errors import (
    AdminValidationError,
    FileStorageError,
    InvalidRequestError,
    NotFoundResource,
    StoreError,
)
from dazzle_admin.runtime.field_formatter import FieldFormatter, FormattedPayload
from dazzle_admin.runtime.file_storage import StorageBackend
from dazzle_admin.runtime.logging import get_admin_logger, log_with_context
from dazzle_admin.runtime.props import PropsBuilder
from dazzle_admin.runtime.registry import ResourceRegistry
from dazzle_admin.runtime.request_parser import (
    AdminAction,
    AdminRequest,
    FormAction,
    RawRequest,
    parse_request,
)
from dazzle_admin.runtime.responses import (
    OperationResult,
    Rendered,
    ResponseBuilder,
    store_error_message,
)
from dazzle_admin.runtime.store import DataStore
from dazzle_admin.runtime.validator import validate
from dazzle_admin.specs.resource import ResourceSpec

logger = get_admin_logger()

FILE_STORAGE_FAILED = "The uploaded file could not be stored"


class AdminRouter:
    """
    Method-routed request handler for ``<base_path>/<resource>[/<id>]``.

    Example:
        router = AdminRouter(registry, SQLiteDataStore(path), AdminConfig())
        result = await router.handle(RawRequest("GET", "/admin/post"))
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        store: DataStore,
        config: AdminConfig | None = None,
        storage: StorageBackend | None = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config or AdminConfig()
        self.storage = storage

        self.formatter = FieldFormatter(registry, storage)
        self.dispatcher = OperationDispatcher(store, storage, debug=self.config.debug)
        self.props = PropsBuilder(registry, store, storage)
        self.responses = ResponseBuilder(self.config.base_path)

    async def handle(self, raw: RawRequest) -> OperationResult:
        """
        Handle one request.

        Raises:
            Exception: Only in development, where errors are not converted
        """
        request: AdminRequest | None = None
        try:
            request = parse_request(
                raw,
                self.config.base_path,
                self.registry,
                items_per_page=self.config.items_per_page,
                max_items_per_page=self.config.max_items_per_page,
            )
            if request.resource is None:
                if request.resource_segment is None and request.method == "GET":
                    return self.responses.rendered(self.props.dashboard_props())
                raise NotFoundResource(request.resource_segment or "")

            if request.method == "GET":
                return await self.handle_get(request, request.resource)
            if request.method == "POST":
                return await self.handle_post(request, request.resource)
            if request.method == "DELETE":
                return await self.handle_delete(request, request.resource)
            return self.responses.not_found(f"Method {request.method} not supported")

        except NotFoundResource as exc:
            logger.debug(str(exc))
            return self.responses.not_found(str(exc))
        except InvalidRequestError as exc:
            if self.config.debug:
                raise
            logger.warning(f"Invalid request {raw.method} {raw.path}: {exc}")
            return Rendered(props={}, error=str(exc), status_code=400)
        except Exception as exc:
            log_with_context(
                logger,
                logging.ERROR,
                f"Unexpected error handling {raw.method} {raw.path}: {exc}",
                exc_info=True,
                method=raw.method,
                path=raw.path,
            )
            if self.config.debug:
                raise
            if isinstance(exc, StoreError):
                return Rendered(props={}, error=store_error_message(exc), status_code=503)
            return self.responses.unexpected()

    # -------------------------------------------------------------------------
    # GET: list, detail, new
    # -------------------------------------------------------------------------

    async def handle_get(self, request: AdminRequest, resource: ResourceSpec) -> OperationResult:
        if request.invalid_id:
            return self.responses.not_found(f"Invalid {resource.name} identifier")

        if request.is_new:
            return self.responses.rendered(self.props.detail_props(resource), request.message)

        if request.record_id is not None:
            record = await self.store.get(resource, request.record_id)
            if record is None:
                return self.responses.not_found(f"{resource.name} {request.record_id} not found")
            return self.responses.rendered(
                self.props.detail_props(resource, record, request.record_id), request.message
            )

        outcome = await self.dispatcher.dispatch(resource, AdminAction.LIST, query=request.query)
        return await self.responses.build(
            request, outcome, self.props, debug=self.config.debug
        )

    # -------------------------------------------------------------------------
    # POST: create, update, delete
    # -------------------------------------------------------------------------

    def _short_circuits(self, request: AdminRequest) -> bool:
        """Delete/redirect intent with nothing to act on: re-render the list."""
        intent = request.form_action is FormAction.DELETE or request.redirect
        nothing_to_save = not request.has_domain_values or request.message is not None
        return (
            intent
            and request.record_id is None
            and not request.is_new
            and nothing_to_save
        )

    async def handle_post(self, request: AdminRequest, resource: ResourceSpec) -> OperationResult:
        if request.invalid_id:
            return self.responses.not_found(f"Invalid {resource.name} identifier")

        if self._short_circuits(request):
            return self.responses.rendered(
                await self.props.list_props(resource, request.query), request.message
            )

        action = request.action
        if action is AdminAction.DELETE:
            outcome = await self.dispatcher.dispatch(resource, action, request.record_id)
            return await self.responses.build(
                request, outcome, self.props, debug=self.config.debug
            )

        is_create = action is AdminAction.CREATE
        try:
            payload = await self.formatter.format(
                request.form, resource, is_create, request.removed_files
            )
        except FileStorageError as exc:
            if self.config.debug:
                raise
            logger.warning(f"File storage failed for {resource.name}: {exc}")
            return self.responses.store_failed(
                self.props.detail_props(
                    resource, request.form.to_dict(), request.record_id, from_form=True
                ),
                FILE_STORAGE_FAILED,
            )

        try:
            self._validate(payload, resource, is_create)
        except AdminValidationError as exc:
            await self.dispatcher.discard_stored_files(payload)
            return self.responses.validation_failed(
                self.props.detail_props(
                    resource, payload.echo(), request.record_id, from_form=True
                ),
                exc.result,
            )

        outcome = await self.dispatcher.dispatch(resource, action, request.record_id, payload)
        return await self.responses.build(
            request, outcome, self.props, payload, debug=self.config.debug
        )

    @staticmethod
    def _validate(payload: FormattedPayload, resource: ResourceSpec, is_create: bool) -> None:
        result = validate(payload, resource, is_create)
        if result:
            raise AdminValidationError(result)

    # -------------------------------------------------------------------------
    # DELETE: delete many
    # -------------------------------------------------------------------------

    async def handle_delete(
        self, request: AdminRequest, resource: ResourceSpec
    ) -> OperationResult:
        outcome = await self.dispatcher.dispatch(
            resource, AdminAction.DELETE_MANY, ids=request.ids
        )
        return await self.responses.build(
            request, outcome, self.props, debug=self.config.debug
        )
