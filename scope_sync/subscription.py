"""
Subscription handles.

Every listener registration (store change events, local state updates,
connection state transitions) returns a Subscription that the caller
cancels explicitly.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class CancellationToken:
    """Flag shared between a subscription and the code delivering to it."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)


class Subscription:
    """Handle for a registered listener.

    Cancelling is idempotent and removes the listener from its registry
    immediately; deliveries already in progress check `active` first.

    Example:
        >>> with client.subscribe(handler):
        ...     await client.store_object("todonna-item", "a", payload)
    """

    def __init__(self, listener: Any, token: CancellationToken | None = None) -> None:
        self.listener = listener
        self.token = token or CancellationToken()

    @property
    def active(self) -> bool:
        return not self.token.cancelled

    def cancel(self) -> None:
        self.token.cancel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()


class SubscriptionRegistry:
    """Ordered set of active subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def add(self, listener: Any) -> Subscription:
        subscription = Subscription(listener)
        self._subscriptions.append(subscription)
        subscription.token.on_cancel(lambda: self._discard(subscription))
        return subscription

    def active(self) -> list[Subscription]:
        """Snapshot of active subscriptions, safe to iterate while cancelling."""
        return [s for s in self._subscriptions if s.active]

    def cancel_all(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _discard(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
