"""
In-process scope client.

Keeps objects in a dict with a monotonically increasing revision per
write. Useful for tests and for embedding the sync layer without a
remote backend. Remote activity from other devices can be simulated
with `inject_remote_change` / `inject_remote_removal`.
"""

from __future__ import annotations

import copy
from typing import Any

from ..exceptions import RecordNotFoundError
from .base import ChangeEvent, ChangeOrigin, ScopeCapability, ScopeClient


class InMemoryScopeClient(ScopeClient):
    """Dict-backed scope client.

    Example:
        >>> client = InMemoryScopeClient("todos")
        >>> await client.store_object("todonna-item", "a", {"todo_item_text": "x"})
        '1'
        >>> client.fail("store_object", "b", ScopeStorageError("store_object", "b"))
    """

    def __init__(self, scope: str, capabilities: ScopeCapability | None = None) -> None:
        super().__init__(scope)
        if capabilities is not None:
            self.capabilities = capabilities
        self._objects: dict[str, tuple[Any, str]] = {}
        self._revision = 0
        self._failures: dict[tuple[str, str | None], Exception] = {}

        # (operation, key, max_age_ms) for every call, in order
        self.requests: list[tuple[str, str, int | None]] = []

    def fail(self, operation: str, key: str | None, error: Exception) -> None:
        """Make an operation raise `error` until `clear_failures` is called.

        Args:
            operation: One of get_object, get_listing, store_object, remove
            key: Key (or listing prefix) to fail on; None fails every key
            error: Exception to raise
        """
        self._failures[(operation, key)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def seed(self, key: str, obj: Any) -> str:
        """Store an object as-is without emitting a change event."""
        revision = self._next_revision()
        self._objects[key] = (copy.deepcopy(obj), revision)
        return revision

    def dump(self) -> dict[str, Any]:
        """Copy of every stored object, by key."""
        return {key: copy.deepcopy(obj) for key, (obj, _) in self._objects.items()}

    def revision_of(self, key: str) -> str | None:
        entry = self._objects.get(key)
        return entry[1] if entry else None

    async def get_object(self, key: str, max_age_ms: int | None = None) -> Any | None:
        self.requests.append(("get_object", key, max_age_ms))
        self._check_failure("get_object", key)
        if key not in self._objects:
            raise RecordNotFoundError(key, self.scope)
        return copy.deepcopy(self._objects[key][0])

    async def get_listing(self, prefix: str = "", max_age_ms: int | None = None) -> dict[str, Any]:
        self.requests.append(("get_listing", prefix, max_age_ms))
        self._check_failure("get_listing", prefix)
        listing: dict[str, Any] = {}
        for key, (_, revision) in self._objects.items():
            if not key.startswith(prefix):
                continue
            name, sep, _ = key[len(prefix):].partition("/")
            if not sep:
                listing[name] = {"ETag": revision}
                continue
            # A folder carries the revision of its latest write
            folder = listing.setdefault(name + "/", {"ETag": revision})
            if int(revision) > int(folder["ETag"]):
                folder["ETag"] = revision
        return listing

    async def store_object(self, type_alias: str, key: str, payload: dict[str, Any]) -> str | None:
        self.requests.append(("store_object", key, None))
        self._check_failure("store_object", key)
        old = self._objects.get(key)
        revision = self.seed(key, payload)
        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.LOCAL,
                revision=revision,
                old_value=copy.deepcopy(old[0]) if old else None,
                new_value=copy.deepcopy(payload),
            )
        )
        return revision

    async def remove(self, key: str) -> None:
        self.requests.append(("remove", key, None))
        self._check_failure("remove", key)
        old = self._objects.pop(key, None)
        if old is None:
            return
        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.LOCAL,
                old_value=old[0],
            )
        )

    async def inject_remote_change(self, key: str, obj: Any) -> str:
        """Simulate another device writing `obj` at `key`."""
        old = self._objects.get(key)
        revision = self.seed(key, obj)
        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.REMOTE,
                revision=revision,
                old_value=old[0] if old else None,
                new_value=copy.deepcopy(obj),
            )
        )
        return revision

    async def inject_remote_removal(self, key: str) -> None:
        """Simulate another device deleting `key`."""
        old = self._objects.pop(key, None)
        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.REMOTE,
                old_value=old[0] if old else None,
            )
        )

    def _next_revision(self) -> str:
        self._revision += 1
        return str(self._revision)

    def _check_failure(self, operation: str, key: str) -> None:
        error = self._failures.get((operation, key)) or self._failures.get((operation, None))
        if error is not None:
            raise error
