"""
Local state store.

Holds the latest loaded snapshot of every tracked scope and notifies
listeners when a snapshot is replaced. It knows nothing about the
remote store or about rendering.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from ..exceptions import ScopeSyncError
from ..subscription import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)

StateListener = Callable[[str, Any], None]


class LocalStateStore:
    """Mapping from scope name to its current snapshot.

    Lifecycle: `initialize` seeds defaults, `set` replaces a snapshot and
    notifies listeners, `subscribe` registers a listener, `close` drops
    listeners and snapshots.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, Any] = {}
        self._listeners = SubscriptionRegistry()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def initialize(self, defaults: Mapping[str, Any]) -> None:
        """Seed snapshots for scopes that have none yet, without notifying."""
        for scope, value in defaults.items():
            self._snapshots.setdefault(scope, value)

    def get(self, scope: str, default: Any = None) -> Any:
        return self._snapshots.get(scope, default)

    def set(self, scope: str, value: Any) -> None:
        if self._closed:
            raise ScopeSyncError("Local state store is closed", {"scope": scope})
        self._snapshots[scope] = value
        for subscription in self._listeners.active():
            try:
                subscription.listener(scope, value)
            except Exception:
                logger.exception(f"State listener failed for scope {scope}")

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only copy of all snapshots."""
        return MappingProxyType(dict(self._snapshots))

    def subscribe(self, listener: StateListener) -> Subscription:
        return self._listeners.add(listener)

    def close(self) -> None:
        self._listeners.cancel_all()
        self._snapshots.clear()
        self._closed = True
