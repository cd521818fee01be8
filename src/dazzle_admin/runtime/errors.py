"""
Error taxonomy for the admin request pipeline.

Every failure a request can hit is one of these. The router classifies
them into an operation result; nothing below the dispatcher lets a raw
driver exception escape.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dazzle_admin.runtime.validator import ValidationResult


class AdminError(Exception):
    """Base class for admin errors."""


class NotFoundResource(AdminError):
    """Raised when a path segment does not name a known resource."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown resource: {name}")


class AdminValidationError(AdminError):
    """Raised when one or more field rules failed."""

    def __init__(self, result: ValidationResult, message: str = "Validation failed"):
        self.result = result
        super().__init__(message)


class FileStorageError(AdminError):
    """Raised when an uploaded artifact cannot be persisted or removed."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(AdminError):
    """Base class for errors raised by a data store."""


class StoreConstraintError(StoreError):
    """Raised when the store rejects an operation (unique, FK, not found)."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        constraint_type: str = "integrity",
    ):
        self.field = field
        self.constraint_type = constraint_type  # unique | foreign_key | not_null | not_found | integrity
        super().__init__(message)


class RecordNotFoundError(StoreConstraintError):
    """Raised when an update or delete matched no record."""

    def __init__(self, resource: str, record_id: object):
        self.resource = resource
        self.record_id = record_id
        super().__init__(
            f"{resource} with identifier '{record_id}' not found",
            constraint_type="not_found",
        )


class StoreUnavailableError(StoreError):
    """Raised when the store itself cannot be reached or fails unexpectedly."""


class InvalidRequestError(AdminError):
    """Raised when a request body or parameter cannot be decoded."""
