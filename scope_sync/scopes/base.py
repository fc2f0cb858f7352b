"""
Abstract scope client interface.

Defines the contract the sync layer consumes from the remote object
store: one client per scope, offering key-based reads and writes,
prefix listings, and change notifications.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, Flag, auto
from typing import Any

from ..exceptions import RecordNotFoundError
from ..subscription import Subscription, SubscriptionRegistry

logger = logging.getLogger(__name__)


class ScopeCapability(Flag):
    """Operations a scope client supports, queried once at initialization."""

    NONE = 0
    READ = auto()
    WRITE = auto()
    LISTING = auto()
    CHANGES = auto()
    ALL = READ | WRITE | LISTING | CHANGES


class ChangeOrigin(Enum):
    """Where a change notification came from."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class ChangeEvent:
    """A change to one key of a scope."""

    scope: str
    key: str | None
    origin: ChangeOrigin
    revision: str | None = None
    old_value: Any = None
    new_value: Any = None


ChangeHandler = Callable[[ChangeEvent], Awaitable[None] | None]


def is_not_found_error(error: BaseException) -> bool:
    """Check whether an error belongs to the "not found" family.

    Matches RecordNotFoundError, anything carrying a 404 `status` or
    `code` attribute (aiohttp.ClientResponseError included), errors named
    NotFoundError, and messages containing "Not Found".
    """
    if isinstance(error, RecordNotFoundError):
        return True
    if getattr(error, "status", None) == 404 or getattr(error, "code", None) == 404:
        return True
    if type(error).__name__ == "NotFoundError":
        return True
    return "Not Found" in str(error)


class ScopeClient(ABC):
    """Per-scope façade over the remote object store.

    Implementations raise RecordNotFoundError (or another member of the
    not-found family) for absent keys, and ScopeStorageError for every
    other backend failure. `max_age_ms` bounds the age of cached reads;
    None means the backend default and 0 forces a fresh read.
    """

    capabilities: ScopeCapability = ScopeCapability.ALL

    def __init__(self, scope: str) -> None:
        self.scope = scope
        self._subscriptions = SubscriptionRegistry()

    def supports(self, capability: ScopeCapability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def get_object(self, key: str, max_age_ms: int | None = None) -> Any | None:
        """Read the object stored at key.

        Returns:
            The stored object, or None if absent

        Raises:
            RecordNotFoundError: If the backend reports the key as missing
            ScopeStorageError: On any other failure
        """
        ...

    @abstractmethod
    async def get_listing(self, prefix: str = "", max_age_ms: int | None = None) -> dict[str, Any]:
        """List keys under a prefix.

        Returns:
            Mapping of key to backend metadata; folder entries end with "/"
        """
        ...

    @abstractmethod
    async def store_object(self, type_alias: str, key: str, payload: dict[str, Any]) -> str | None:
        """Store an object, replacing any existing one.

        Returns:
            New revision of the object if the backend exposes one
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete the object at key."""
        ...

    def subscribe(self, handler: ChangeHandler) -> Subscription:
        """Register a change handler for this scope."""
        return self._subscriptions.add(handler)

    async def close(self) -> None:
        """Release resources and drop all subscriptions."""
        self._subscriptions.cancel_all()

    async def _emit(self, event: ChangeEvent) -> None:
        """Deliver an event to every active subscriber.

        A failing handler is logged and does not stop delivery to the others.
        """
        for subscription in self._subscriptions.active():
            if not subscription.active:
                continue
            try:
                result = subscription.listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f"Change handler failed for {event.scope}/{event.key}",
                    extra={"scope": event.scope},
                )
