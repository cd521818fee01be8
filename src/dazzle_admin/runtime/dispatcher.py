"""
Operation dispatcher - issues exactly one store call per request.

The action comes from the parsed request; the dispatcher never keeps state
between requests. Store errors are caught at this boundary and returned in
the outcome so the response builder can render them. File artifacts are
reconciled with the result: handles queued for removal are deleted after
a successful mutation, and files stored while formatting are deleted again
when the mutation fails.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from dazzle_admin.runtime.errors import (
    FileStorageError,
    RecordNotFoundError,
    StoreConstraintError,
    StoreError,
)
from dazzle_admin.runtime.field_formatter import FormattedPayload
from dazzle_admin.runtime.file_storage import StorageBackend
from dazzle_admin.runtime.logging import get_admin_logger, log_with_context
from dazzle_admin.runtime.query import ListQuery
from dazzle_admin.runtime.request_parser import AdminAction
from dazzle_admin.runtime.store import DataStore, FindResult, RecordId
from dazzle_admin.specs.resource import ResourceSpec

logger = get_admin_logger()


@dataclass
class DispatchOutcome:
    """
    Result of one dispatched operation.

    Attributes:
        action: The dispatched action
        resource: Target resource
        record_id: Identifier the operation addressed (or was assigned on create)
        record: Created or updated record
        found: Listed page (LIST only)
        removed: Number of removed records (DELETE / DELETE_MANY)
        error: Store error caught at the dispatch boundary
    """

    action: AdminAction
    resource: ResourceSpec
    record_id: RecordId | None = None
    record: dict[str, Any] | None = None
    found: FindResult | None = None
    removed: int = 0
    error: StoreError | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None


class OperationDispatcher:
    """
    Routes an action to the matching ``DataStore`` operation.

    Args:
        store: Data store
        storage: File storage used to reconcile uploaded artifacts
        debug: Re-raise constraint errors instead of returning them
    """

    def __init__(
        self,
        store: DataStore,
        storage: StorageBackend | None = None,
        debug: bool = False,
    ):
        self.store = store
        self.storage = storage
        self.debug = debug

    async def dispatch(
        self,
        resource: ResourceSpec,
        action: AdminAction,
        record_id: RecordId | None = None,
        payload: FormattedPayload | None = None,
        ids: Sequence[RecordId] = (),
        query: ListQuery | None = None,
    ) -> DispatchOutcome:
        """
        Dispatch one action.

        Raises:
            StoreConstraintError: In debug mode, for constraint violations other
                than a missing record
        """
        outcome = DispatchOutcome(action=action, resource=resource, record_id=record_id)
        data = dict(payload.values) if payload is not None else {}

        log_with_context(
            logger,
            logging.DEBUG,
            f"Dispatching {action} on {resource.name}",
            action=str(action),
            resource=resource.name,
            record_id=record_id,
        )

        try:
            if action is AdminAction.LIST:
                outcome.found = await self.store.find(resource, query or ListQuery())
            elif action is AdminAction.CREATE:
                outcome.record = await self.store.insert(resource, data)
                outcome.record_id = outcome.record.get(resource.id_field)
            elif action is AdminAction.UPDATE:
                self._require_id(action, record_id)
                outcome.record = await self.store.update(resource, record_id, data)
                if outcome.record is None:
                    raise RecordNotFoundError(resource.name, record_id)
            elif action is AdminAction.DELETE:
                self._require_id(action, record_id)
                outcome.removed = await self.store.remove(resource, record_id)
                if outcome.removed == 0:
                    raise RecordNotFoundError(resource.name, record_id)
            elif action is AdminAction.DELETE_MANY:
                outcome.removed = await self.store.remove_many(resource, list(ids))
            else:
                raise ValueError(f"Unknown action: {action}")
        except StoreError as exc:
            outcome.error = exc
            await self._after_failure(payload)
            self._log_failure(outcome, exc)
            if (
                self.debug
                and isinstance(exc, StoreConstraintError)
                and not isinstance(exc, RecordNotFoundError)
            ):
                raise
            return outcome

        if action.is_mutation:
            await self._after_success(payload)
            log_with_context(
                logger,
                logging.INFO,
                f"{action} {resource.name} succeeded",
                action=str(action),
                resource=resource.name,
                record_id=outcome.record_id,
                removed=outcome.removed,
            )
        return outcome

    @staticmethod
    def _require_id(action: AdminAction, record_id: RecordId | None) -> None:
        if record_id is None:
            raise ValueError(f"{action} requires a record identifier")

    def _log_failure(self, outcome: DispatchOutcome, exc: StoreError) -> None:
        context: dict[str, Any] = {
            "action": str(outcome.action),
            "resource": outcome.resource.name,
            "record_id": outcome.record_id,
        }
        if isinstance(exc, StoreConstraintError):
            context["constraint_type"] = exc.constraint_type
            context["field"] = exc.field
            log_with_context(logger, logging.WARNING, str(exc), context)
        else:
            log_with_context(logger, logging.ERROR, str(exc), context, exc_info=True)

    # -------------------------------------------------------------------------
    # File reconciliation
    # -------------------------------------------------------------------------

    async def discard_stored_files(self, payload: FormattedPayload | None) -> None:
        """Delete artifacts stored while formatting a payload that will not be saved."""
        if payload is None or self.storage is None:
            return
        for stored in payload.stored_files:
            await self._delete_file(stored.key)

    async def _after_failure(self, payload: FormattedPayload | None) -> None:
        await self.discard_stored_files(payload)

    async def _after_success(self, payload: FormattedPayload | None) -> None:
        if payload is None or self.storage is None:
            return
        for key in payload.removed_files:
            await self._delete_file(key)

    async def _delete_file(self, key: str) -> None:
        assert self.storage is not None
        try:
            await self.storage.delete(key)
        except FileStorageError as exc:
            log_with_context(logger, logging.WARNING, f"Could not delete file: {exc}", key=key)
