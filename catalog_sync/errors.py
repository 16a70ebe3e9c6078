"""Error taxonomy for the synchronization engine."""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for every error raised by the engine."""


class UpstreamError(SyncError):
    def __init__(self, message: str, *, integration_id: int | None = None) -> None:
        super().__init__(message)
        self.integration_id = integration_id


class UpstreamUnavailable(UpstreamError):
    """Network failure, timeout or a 5xx/429 answer from an integration."""


class UpstreamAuthError(UpstreamError):
    """The integration rejected the configured credentials."""


class UpstreamFormatError(UpstreamError):
    """The payload could not be parsed at all."""


class CatalogWriteError(SyncError):
    def __init__(self, store_id: int, message: str) -> None:
        super().__init__(message)
        self.store_id = store_id


class PartialWriteError(CatalogWriteError):
    """Insert failed after the soft-delete: the store has no active products."""


class PublishError(SyncError):
    pass


class StoreNotFoundError(SyncError):
    pass


class IntegrationConfigError(SyncError):
    pass


class ExecutionConflictError(SyncError):
    def __init__(self, sync_config_id: int, active_execution_id: str | None = None) -> None:
        message = f"Sync configuration {sync_config_id} already has an active execution"
        if active_execution_id:
            message += f" ({active_execution_id})"
        super().__init__(message)
        self.sync_config_id = sync_config_id
        self.active_execution_id = active_execution_id


class PersistenceError(SyncError):
    pass


class InvalidTransitionError(SyncError):
    pass


# Raised by a store pipeline; recorded on the execution without aborting the run.
STORE_LEVEL_ERRORS = (
    UpstreamUnavailable,
    UpstreamFormatError,
    CatalogWriteError,
    PublishError,
    StoreNotFoundError,
)
