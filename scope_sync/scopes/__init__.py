"""
Scope clients.

The sync layer talks to the remote object store through one ScopeClient
per scope. Three implementations are provided:

- InMemoryScopeClient: process-local, for tests and embedding
- LocalFileScopeClient: JSON files on disk
- RemoteStorageScopeClient: remoteStorage HTTP protocol over aiohttp

Example:
    >>> from scope_sync.scopes import RemoteStorageScopeClient
    >>> client = RemoteStorageScopeClient(
    ...     "https://storage.example.com/storage/alice",
    ...     "todonna",
    ...     bearer_token="token-123",
    ... )
"""

from .base import (
    ChangeEvent,
    ChangeHandler,
    ChangeOrigin,
    ScopeCapability,
    ScopeClient,
    is_not_found_error,
)
from .local import LocalFileScopeClient
from .memory import InMemoryScopeClient
from .remote import RemoteStorageScopeClient

__all__ = [
    "ChangeEvent",
    "ChangeHandler",
    "ChangeOrigin",
    "ScopeCapability",
    "ScopeClient",
    "is_not_found_error",
    "InMemoryScopeClient",
    "LocalFileScopeClient",
    "RemoteStorageScopeClient",
]
