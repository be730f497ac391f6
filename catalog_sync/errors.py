"""Exception hierarchy shared by the sync pipeline."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for catalog sync failures."""


class TransientError(SyncError):
    """Network or upstream hiccup; safe to retry."""


class ConfigurationError(SyncError):
    """Missing or rejected credentials / connection parameters."""


class ValidationError(SyncError):
    """A single record or mapping request is invalid."""


class ConflictError(SyncError):
    """A sync of the same type is already running."""


class StateError(SyncError):
    """A sync run cannot move to the requested state."""


class SyncTimeoutError(SyncError, TimeoutError):
    """Bulk operation polling gave up before the remote job finished."""

    def __init__(self, operation_id: str, waited: float) -> None:
        super().__init__(f"Bulk operation {operation_id} still running after {waited:.0f}s")
        self.operation_id = operation_id
        self.waited = waited


class BulkOperationError(SyncError):
    """Shopify refused the bulk query or reported it failed."""


class MappingNotFoundError(SyncError, LookupError):
    """No value mapping exists for the requested raw value or id."""
