"""
Sync configuration and factories.

Configuration can be provided directly, via environment variables, or
from a YAML settings file.

Environment Variables:
    SCOPE_SYNC_USER_ADDRESS: User address (user@host), informational
    SCOPE_SYNC_STORAGE_URL: remoteStorage root URL of the user
    SCOPE_SYNC_BEARER_TOKEN: OAuth bearer token for the storage
    SCOPE_SYNC_LOCAL_PATH: Directory for local file storage
    SCOPE_SYNC_DEFAULT_MAX_AGE_MS: Default freshness bound (default: 24h)
    SCOPE_SYNC_TODOS_MAX_AGE_MS: Freshness bound for loading todos (default: 5 min)
    SCOPE_SYNC_GUARD_RELEASE_DELAY_MS: Saving guard release delay (default: 100)
    SCOPE_SYNC_REQUEST_TIMEOUT_S: HTTP timeout per request (default: 30)
    SCOPE_SYNC_SCOPES: Comma-separated scopes to track

YAML settings (~/.scope-sync/settings.yaml):

```yaml
sync:
  storage_url: "https://storage.example.com/storage/alice"
  bearer_token: "..."
  todos_max_age_ms: 300000
  scopes: [items, settings, todos, stock, ai-config]
```
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .records.types import DEFAULT_MAX_AGE_MS, LoadOptions
from .scopes.base import ScopeClient
from .scopes.local import LocalFileScopeClient
from .scopes.memory import InMemoryScopeClient
from .scopes.remote import RemoteStorageScopeClient
from .sync.bindings import DocumentScope, ObjectListScope, RecordScope, ScopeBinding
from .sync.coordinator import LocalStateCoordinator
from .sync.engine import SyncEngine

DEFAULT_SCOPES = ["items", "settings", "todos", "stock", "ai-config"]

# Logical scope -> storage scope (first path segment on the server)
DEFAULT_SCOPE_PATHS = {
    "items": "mymodule",
    "settings": "mymodule",
    "todos": "todonna",
    "stock": "einkauf",
    "ai-config": "ai-wallet",
}

DEFAULT_SETTINGS = {"theme": "light", "language": "en"}

_ENV_PREFIX = "SCOPE_SYNC_"
_INT_FIELDS = ("default_max_age_ms", "todos_max_age_ms", "guard_release_delay_ms")


@dataclass
class SyncConfig:
    """Configuration for the sync layer.

    Backend selection: storage_url selects the remoteStorage HTTP backend,
    otherwise local_path selects local JSON files, otherwise objects stay
    in memory.

    Attributes:
        user_address: User address (user@host), informational
        storage_url: remoteStorage root URL of the user
        bearer_token: OAuth bearer token
        local_path: Directory for local file storage
        default_max_age_ms: Default freshness bound for listings
        todos_max_age_ms: Freshness bound used when loading todos
        guard_release_delay_ms: Release delay of the saving guard
        request_timeout_s: HTTP timeout per request
        scopes: Logical scopes to track
        scope_paths: Logical scope -> storage scope mapping
    """

    user_address: str | None = None
    storage_url: str | None = None
    bearer_token: str | None = None
    local_path: str | None = None
    default_max_age_ms: int = DEFAULT_MAX_AGE_MS
    todos_max_age_ms: int = 5 * 60 * 1000
    guard_release_delay_ms: int = 100
    request_timeout_s: float = 30.0
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    scope_paths: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SCOPE_PATHS))

    def __post_init__(self) -> None:
        for name in _INT_FIELDS:
            if getattr(self, name) < 0:
                raise ConfigurationError(name, "must not be negative")
        if self.request_timeout_s <= 0:
            raise ConfigurationError("request_timeout_s", "must be positive")
        unknown = [s for s in self.scopes if s not in self.scope_paths]
        if unknown:
            raise ConfigurationError("scopes", f"no storage path for {', '.join(unknown)}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Create configuration from a mapping, ignoring unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        try:
            for name in _INT_FIELDS:
                if name in values:
                    values[name] = int(values[name])
            if "request_timeout_s" in values:
                values["request_timeout_s"] = float(values["request_timeout_s"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError("sync", f"invalid number: {e}") from e
        if "scope_paths" in values:
            values["scope_paths"] = {**DEFAULT_SCOPE_PATHS, **values["scope_paths"]}
        return cls(**values)

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create configuration from SCOPE_SYNC_* environment variables."""
        data: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name == "scope_paths":
                continue
            value = os.environ.get(_ENV_PREFIX + f.name.upper())
            if value is None or value == "":
                continue
            if f.name == "scopes":
                data["scopes"] = [s.strip() for s in value.split(",") if s.strip()]
            else:
                data[f.name] = value
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> SyncConfig:
        """Load configuration from the `sync` section of a YAML file.

        A missing file yields the defaults.
        """
        config_path = Path(path) if path else Path.home() / ".scope-sync" / "settings.yaml"
        if not config_path.exists():
            return cls()

        try:
            content = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(str(config_path), f"invalid YAML: {e}") from e
        if not isinstance(content, dict):
            raise ConfigurationError(str(config_path), "expected a mapping")

        section = content.get("sync", {})
        if not isinstance(section, dict):
            raise ConfigurationError("sync", "expected a mapping")
        return cls.from_dict(section)


def create_client(config: SyncConfig, storage_scope: str) -> ScopeClient:
    """Create a scope client for the configured backend."""
    if config.storage_url:
        return RemoteStorageScopeClient(
            config.storage_url,
            storage_scope,
            bearer_token=config.bearer_token,
            timeout_s=config.request_timeout_s,
        )
    if config.local_path:
        return LocalFileScopeClient(config.local_path, storage_scope)
    return InMemoryScopeClient(storage_scope)


def create_bindings(
    config: SyncConfig,
    clients: dict[str, ScopeClient] | None = None,
) -> list[ScopeBinding]:
    """Create bindings for the configured scopes.

    Args:
        config: Sync configuration
        clients: Storage scope -> client; missing clients are created
            with create_client and added to this mapping

    Returns:
        One binding per configured scope
    """
    clients = {} if clients is None else clients

    def client_for(scope: str) -> ScopeClient:
        storage_scope = config.scope_paths[scope]
        if storage_scope not in clients:
            clients[storage_scope] = create_client(config, storage_scope)
        return clients[storage_scope]

    bindings: list[ScopeBinding] = []
    for scope in config.scopes:
        if scope == "todos":
            bindings.append(
                RecordScope(
                    scope,
                    SyncEngine(client_for(scope)),
                    LoadOptions(max_age_ms=config.todos_max_age_ms),
                )
            )
        elif scope == "settings":
            bindings.append(
                DocumentScope(scope, client_for(scope), "settings", default=DEFAULT_SETTINGS)
            )
        elif scope == "ai-config":
            bindings.append(DocumentScope(scope, client_for(scope), "config", optimistic=False))
        elif scope == "items":
            bindings.append(
                ObjectListScope(
                    scope, client_for(scope), prefix="items/", max_age_ms=config.default_max_age_ms
                )
            )
        else:
            bindings.append(
                ObjectListScope(scope, client_for(scope), max_age_ms=config.default_max_age_ms)
            )
    return bindings


def create_coordinator(
    config: SyncConfig | None = None,
    clients: dict[str, ScopeClient] | None = None,
) -> LocalStateCoordinator:
    """Create a coordinator tracking the configured scopes.

    Args:
        config: Sync configuration (default: from environment)
        clients: Optional pre-built clients by storage scope

    Returns:
        Coordinator, not yet connected
    """
    config = config or SyncConfig.from_environment()
    return LocalStateCoordinator(
        create_bindings(config, clients),
        guard_release_delay_ms=config.guard_release_delay_ms,
    )
