"""
Scope Sync

Client-side synchronization of application records with a per-user
remote object store organized in named scopes (todos, stock, ai-config, ...).

Provides:
- Record model and Todonna wire codec
- Scope clients (in-memory, local files, remoteStorage over HTTP)
- SyncEngine: CRUD, sequential batches, replace_all reconciliation
- LocalStateCoordinator: local state for all scopes, reload on remote
  changes, saving guard against self-triggered reloads

Usage:

    >>> from scope_sync import Record, SyncConfig, create_coordinator
    >>> coordinator = create_coordinator(SyncConfig.from_yaml())
    >>> await coordinator.connect()
    >>> await coordinator.add_record(Record(id="a1", text="Buy milk"))
    >>> coordinator.store.get("todos")

Engine only:

    >>> from scope_sync import RemoteStorageScopeClient, SyncEngine
    >>> engine = SyncEngine(RemoteStorageScopeClient(url, "todonna", bearer_token=token))
    >>> result = await engine.replace_all(records)
    >>> result.succeeded, result.failed
"""

from .config import SyncConfig, create_bindings, create_client, create_coordinator
from .exceptions import (
    ConfigurationError,
    InvalidStateTransitionError,
    NotConnectedError,
    RecordNotFoundError,
    ScopeStorageError,
    ScopeSyncError,
    StorageConnectionError,
    UnknownScopeError,
    ValidationError,
)
from .logging_utils import configure_structured_logging, get_sync_logger
from .records import (
    BatchItemError,
    BatchOperationOptions,
    BatchResult,
    LoadOptions,
    ReconciliationPlan,
    Record,
    RecordCodec,
    RecordStatus,
    RecordUpdate,
)
from .scopes import (
    ChangeEvent,
    ChangeOrigin,
    InMemoryScopeClient,
    LocalFileScopeClient,
    RemoteStorageScopeClient,
    ScopeCapability,
    ScopeClient,
)
from .subscription import CancellationToken, Subscription
from .sync import (
    ConnectionState,
    DocumentScope,
    LocalStateCoordinator,
    LocalStateStore,
    ObjectListScope,
    RecordScope,
    SavingGuard,
    SyncEngine,
)

__all__ = [
    # Configuration
    "SyncConfig",
    "create_bindings",
    "create_client",
    "create_coordinator",
    # Records
    "Record",
    "RecordStatus",
    "RecordUpdate",
    "RecordCodec",
    "BatchResult",
    "BatchItemError",
    "BatchOperationOptions",
    "LoadOptions",
    "ReconciliationPlan",
    # Scope clients
    "ScopeClient",
    "ScopeCapability",
    "ChangeEvent",
    "ChangeOrigin",
    "InMemoryScopeClient",
    "LocalFileScopeClient",
    "RemoteStorageScopeClient",
    "Subscription",
    "CancellationToken",
    # Sync
    "SyncEngine",
    "LocalStateCoordinator",
    "LocalStateStore",
    "ConnectionState",
    "SavingGuard",
    "RecordScope",
    "ObjectListScope",
    "DocumentScope",
    # Logging
    "configure_structured_logging",
    "get_sync_logger",
    # Exceptions
    "ScopeSyncError",
    "RecordNotFoundError",
    "ScopeStorageError",
    "StorageConnectionError",
    "ValidationError",
    "NotConnectedError",
    "InvalidStateTransitionError",
    "UnknownScopeError",
    "ConfigurationError",
]

__version__ = "0.1.0"
