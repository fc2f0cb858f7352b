"""
Local state coordinator.

Owns the local state store for every tracked scope and keeps it in
step with the remote store:
- Capability check of every scope binding, once
- Connection state machine (disconnected -> connecting -> connected)
- Full reload on connect and on remote change notifications
- Saving guard so our own writes do not trigger reload storms
- Write helpers with optimistic (settings) or pessimistic (records,
  items, ai-config) refresh
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from enum import Enum
from typing import Any, TypeVar

from ..exceptions import InvalidStateTransitionError, NotConnectedError, UnknownScopeError
from ..records.types import BatchResult, Record
from ..scopes.base import ChangeEvent, ScopeCapability, ScopeClient
from ..subscription import Subscription, SubscriptionRegistry
from .bindings import DocumentScope, ObjectListScope, RecordScope, ScopeBinding
from .engine import SyncEngine
from .guard import SavingGuard
from .state import LocalStateStore

logger = logging.getLogger(__name__)

B = TypeVar("B", bound=ScopeBinding)

DEFAULT_RECORD_SCOPE = "todos"
DEFAULT_ITEM_SCOPE = "items"


class ConnectionState(Enum):
    """Connection state of the remote store."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CONNECTED},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
}


class LocalStateCoordinator:
    """Keeps a LocalStateStore in step with the remote scopes.

    Example:
        >>> coordinator = LocalStateCoordinator([
        ...     RecordScope("todos", SyncEngine(todos_client)),
        ...     DocumentScope("settings", settings_client, "settings", default={}),
        ... ])
        >>> await coordinator.connect()
        >>> await coordinator.add_record(Record(id="a", text="Buy milk"))
        >>> coordinator.store.get("todos")
        [Record(id='a', text='Buy milk', ...)]
    """

    def __init__(
        self,
        bindings: Iterable[ScopeBinding],
        guard_release_delay_ms: int = 100,
        store: LocalStateStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the coordinator.

        Args:
            bindings: One binding per tracked scope
            guard_release_delay_ms: Release delay of the saving guard
            store: State store to own (default: a new LocalStateStore)
            clock: Monotonic clock in seconds, shared with the guard
        """
        self._bindings: dict[str, ScopeBinding] = {}
        for binding in bindings:
            self._bindings[binding.name] = binding

        self.store = store or LocalStateStore()
        self.guard = SavingGuard(guard_release_delay_ms, clock)

        self._state = ConnectionState.DISCONNECTED
        self._state_listeners = SubscriptionRegistry()
        self._change_subscriptions: list[Subscription] = []
        self._available: frozenset[str] | None = None
        self._loading = 0
        self._reload_count = 0

    # ==================== STATE ====================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def reload_count(self) -> int:
        """Number of completed full reloads."""
        return self._reload_count

    @property
    def available_scopes(self) -> frozenset[str]:
        return self.initialize()

    def initialize(self) -> frozenset[str]:
        """Check every binding's capabilities, once.

        Scopes whose client cannot read are left out of the available set
        and never loaded.

        Returns:
            Names of the available scopes
        """
        if self._available is not None:
            return self._available

        available: set[str] = set()
        defaults: dict[str, Any] = {}
        for name, binding in self._bindings.items():
            if binding.client.supports(ScopeCapability.READ):
                available.add(name)
                defaults[name] = binding.default
            else:
                logger.info(f"Scope {name} is not readable; skipping it")

        self.store.initialize(defaults)
        self._available = frozenset(available)
        return self._available

    def binding(self, scope: str) -> ScopeBinding:
        if scope not in self.available_scopes:
            raise UnknownScopeError(scope)
        return self._bindings[scope]

    def engine(self, scope: str = DEFAULT_RECORD_SCOPE) -> SyncEngine:
        """SyncEngine of a record scope, for batch operations."""
        return self._typed_binding(scope, RecordScope).engine

    def _typed_binding(self, scope: str, kind: type[B]) -> B:
        binding = self.binding(scope)
        if not isinstance(binding, kind):
            raise UnknownScopeError(scope)
        return binding

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> Subscription:
        """Register a listener for connection state transitions."""
        return self._state_listeners.add(listener)

    # ==================== CONNECTION ====================

    async def connect(self, handshake: Callable[[], Awaitable[None]] | None = None) -> None:
        """Run the connection handshake and load all scopes.

        Args:
            handshake: External authentication/connection step; if it
                raises, the coordinator returns to DISCONNECTED and the
                error propagates
        """
        self.initialize()
        await self._transition(ConnectionState.CONNECTING)
        if handshake is not None:
            try:
                await handshake()
            except Exception as e:
                logger.error(f"Connection handshake failed: {e}")
                await self._transition(ConnectionState.DISCONNECTED)
                raise
        await self._transition(ConnectionState.CONNECTED)

    async def mark_connecting(self) -> None:
        await self._transition(ConnectionState.CONNECTING)

    async def mark_connected(self) -> None:
        """Record a connection established elsewhere; triggers a full reload."""
        self.initialize()
        await self._transition(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        await self._transition(ConnectionState.DISCONNECTED)

    async def _transition(self, target: ConnectionState) -> None:
        if target is self._state:
            return
        if target not in _TRANSITIONS[self._state]:
            raise InvalidStateTransitionError(self._state.value, target.value)

        previous = self._state
        self._state = target
        logger.info(f"Connection state: {previous.value} -> {target.value}")

        for subscription in self._state_listeners.active():
            try:
                subscription.listener(target)
            except Exception:
                logger.exception("Connection state listener failed")

        if target is ConnectionState.CONNECTED:
            self._subscribe_changes()
            await self.reload_all()
        elif previous is ConnectionState.CONNECTED:
            self._unsubscribe_changes()
            self.guard.clear()

    def _subscribe_changes(self) -> None:
        # Bindings may share a client; subscribe to each client once
        seen: set[int] = set()
        for name in sorted(self.available_scopes):
            client = self._bindings[name].client
            if id(client) in seen or not client.supports(ScopeCapability.CHANGES):
                continue
            seen.add(id(client))
            self._change_subscriptions.append(client.subscribe(self._on_change))

    def _unsubscribe_changes(self) -> None:
        for subscription in self._change_subscriptions:
            subscription.cancel()
        self._change_subscriptions.clear()

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.is_connected:
            return
        if self.guard.absorbs(event):
            return
        logger.debug(f"Change in {event.scope}/{event.key} ({event.origin.value}); reloading")
        await self.reload_all()

    # ==================== LOADING ====================

    async def reload_all(self) -> dict[str, bool]:
        """Reload every available scope.

        Scopes load concurrently; a failing scope is logged and keeps its
        previous snapshot without affecting the others.

        Returns:
            Per-scope success flags (empty when not connected)
        """
        if not self.is_connected:
            return {}

        names = sorted(self.available_scopes)
        self._loading += 1
        try:
            results = await asyncio.gather(*(self._load_scope(name) for name in names))
        finally:
            self._loading -= 1
        self._reload_count += 1
        return dict(zip(names, results))

    async def reload_scope(self, scope: str) -> bool:
        self.binding(scope)
        return await self._load_scope(scope)

    async def _load_scope(self, scope: str) -> bool:
        binding = self._bindings[scope]
        try:
            value = await binding.load()
        except Exception:
            logger.exception(f"Failed to load scope {scope}", extra={"scope": scope})
            return False
        self.store.set(scope, value)
        return True

    # ==================== WRITES ====================

    def _require_connected(self, operation: str) -> None:
        if not self.is_connected:
            raise NotConnectedError(operation)

    async def _pessimistic_write(
        self,
        operation: str,
        scope: str,
        storage_key: str | None,
        write: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Write, then reload the scope; on failure reload everything and re-raise.

        The saving guard is keyed by the client's scope and the storage key,
        which is what change notifications carry.
        """
        token = self.guard.begin(self._bindings[scope].client.scope, storage_key)
        revision = None
        try:
            outcome = await write()
            if isinstance(outcome, str):
                revision = outcome
        except Exception as e:
            logger.error(
                f"{operation} failed for {scope}/{storage_key}: {e}", extra={"scope": scope}
            )
            await self.reload_all()
            raise
        finally:
            self.guard.complete(token, revision)

        await self._load_scope(scope)
        return outcome

    async def add_record(self, record: Record, scope: str = DEFAULT_RECORD_SCOPE) -> str | None:
        self._require_connected("add record")
        engine = self.engine(scope)
        return await self._pessimistic_write(
            "add record", scope, record.id, lambda: engine.add(record)
        )

    async def update_record(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        scope: str = DEFAULT_RECORD_SCOPE,
    ) -> str | None:
        self._require_connected("update record")
        engine = self.engine(scope)
        return await self._pessimistic_write(
            "update record", scope, record_id, lambda: engine.update(record_id, changes)
        )

    async def remove_record(self, record_id: str, scope: str = DEFAULT_RECORD_SCOPE) -> None:
        self._require_connected("remove record")
        engine = self.engine(scope)
        await self._pessimistic_write(
            "remove record", scope, record_id, lambda: engine.remove(record_id)
        )

    async def replace_records(
        self,
        records: Iterable[Record],
        scope: str = DEFAULT_RECORD_SCOPE,
    ) -> BatchResult:
        """Reconcile a record scope to exactly `records` (see SyncEngine.replace_all).

        The whole scope is guarded for the duration of the reconciliation.
        """
        self._require_connected("replace records")
        engine = self.engine(scope)
        records = list(records)
        return await self._pessimistic_write(
            "replace records", scope, None, lambda: engine.replace_all(records)
        )

    async def save_item(
        self,
        key: str,
        value: dict[str, Any],
        scope: str = DEFAULT_ITEM_SCOPE,
    ) -> str | None:
        self._require_connected("save item")
        binding = self._typed_binding(scope, ObjectListScope)
        return await self._pessimistic_write(
            "save item", scope, binding.storage_key(key), lambda: binding.save(key, value)
        )

    async def delete_item(self, key: str, scope: str = DEFAULT_ITEM_SCOPE) -> None:
        self._require_connected("delete item")
        binding = self._typed_binding(scope, ObjectListScope)
        await self._pessimistic_write(
            "delete item", scope, binding.storage_key(key), lambda: binding.delete(key)
        )

    async def save_document(self, scope: str, value: Any) -> str | None:
        """Save a document scope (settings, AI config).

        For an optimistic binding the new value is visible in the store
        before the write completes; otherwise it is set once the write
        succeeds. On failure all scopes are reloaded to resynchronize and
        the error is re-raised; an optimistic value is not rolled back
        explicitly.
        """
        self._require_connected("save document")
        binding = self._typed_binding(scope, DocumentScope)

        token = self.guard.begin(binding.client.scope, binding.key)
        if binding.optimistic:
            self.store.set(scope, value)
        revision = None
        try:
            revision = await binding.save(value)
        except Exception as e:
            logger.error(f"Saving {scope} failed: {e}", extra={"scope": scope})
            await self.reload_all()
            raise
        finally:
            self.guard.complete(token, revision)

        if not binding.optimistic:
            self.store.set(scope, value)
        return revision

    async def load_item(self, key: str, scope: str = DEFAULT_ITEM_SCOPE) -> dict[str, Any] | None:
        """Read one item straight from the store.

        Returns:
            The item, or None when disconnected, absent or unreadable
        """
        if not self.is_connected:
            return None
        binding = self._typed_binding(scope, ObjectListScope)
        try:
            return await binding.get(key, max_age_ms=0)
        except Exception as e:
            logger.warning(f"Loading item {scope}/{key} failed: {e}", extra={"scope": scope})
            return None

    # ==================== TEARDOWN ====================

    async def close(self) -> None:
        """Drop subscriptions, close the state store and every scope client."""
        self._unsubscribe_changes()
        self._state_listeners.cancel_all()
        self.guard.clear()
        self._state = ConnectionState.DISCONNECTED
        self.store.close()

        closed: set[int] = set()
        clients: list[ScopeClient] = []
        for binding in self._bindings.values():
            if id(binding.client) not in closed:
                closed.add(id(binding.client))
                clients.append(binding.client)
        for client in clients:
            await client.close()
