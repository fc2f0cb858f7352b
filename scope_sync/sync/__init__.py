"""
Sync module.

SyncEngine performs record operations on one scope;
LocalStateCoordinator keeps local state for all scopes in step with
the remote store.
"""

from .bindings import DocumentScope, ObjectListScope, RecordScope, ScopeBinding
from .coordinator import ConnectionState, LocalStateCoordinator
from .engine import SyncEngine, fetch_all, list_keys
from .guard import SavingGuard, WriteToken
from .state import LocalStateStore

__all__ = [
    "ConnectionState",
    "DocumentScope",
    "LocalStateCoordinator",
    "LocalStateStore",
    "ObjectListScope",
    "RecordScope",
    "SavingGuard",
    "ScopeBinding",
    "SyncEngine",
    "WriteToken",
    "fetch_all",
    "list_keys",
]
