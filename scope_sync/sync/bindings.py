"""
Scope bindings.

A binding tells the coordinator how to load one scope into the local
state store and how to write to it:

- RecordScope: records through a SyncEngine (e.g. todos)
- ObjectListScope: a listing of raw objects (e.g. items, stock)
- DocumentScope: a single document (e.g. settings, ai-config)
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import Any

from ..records.types import LoadOptions, Record
from ..scopes.base import ScopeClient, is_not_found_error
from .engine import SyncEngine, fetch_all, list_keys


class ScopeBinding(ABC):
    """How one scope is loaded into local state."""

    def __init__(self, name: str, client: ScopeClient) -> None:
        self.name = name
        self.client = client

    @property
    def default(self) -> Any:
        """Snapshot used before the first successful load."""
        return None

    @abstractmethod
    async def load(self) -> Any:
        """Load the authoritative snapshot from the store."""
        ...


class RecordScope(ScopeBinding):
    """Scope of records, loaded through a SyncEngine."""

    def __init__(
        self,
        name: str,
        engine: SyncEngine,
        load_options: LoadOptions | None = None,
    ) -> None:
        super().__init__(name, engine.client)
        self.engine = engine
        self.load_options = load_options or LoadOptions()

    @property
    def default(self) -> list[Record]:
        return []

    async def load(self) -> list[Record]:
        return await self.engine.get_all(self.load_options)


class ObjectListScope(ScopeBinding):
    """Scope holding free-form objects, loaded as a list of dicts.

    Objects live under `prefix` inside the client's scope, so several
    bindings can share one scope. Each loaded object carries an "id"
    (the key below the prefix unless the object has its own).
    """

    def __init__(
        self,
        name: str,
        client: ScopeClient,
        prefix: str = "",
        max_age_ms: int | None = None,
        type_alias: str = "item",
    ) -> None:
        super().__init__(name, client)
        self.prefix = prefix
        self.max_age_ms = max_age_ms
        self.type_alias = type_alias

    @property
    def default(self) -> list[dict[str, Any]]:
        return []

    def storage_key(self, key: str) -> str:
        return self.prefix + key

    def _as_item(self, item_id: str, obj: Any) -> dict[str, Any]:
        return {"id": item_id, **obj} if isinstance(obj, dict) else {"id": item_id, "value": obj}

    async def get(self, key: str, max_age_ms: int | None = None) -> dict[str, Any] | None:
        """Read one object, shaped like the entries of `load`.

        Returns:
            The object, or None if it does not exist

        Raises:
            ScopeStorageError: For failures other than the object being absent
        """
        try:
            obj = await self.client.get_object(self.storage_key(key), max_age_ms)
        except Exception as e:
            if is_not_found_error(e):
                return None
            raise
        return None if obj is None else self._as_item(key, obj)

    async def load(self) -> list[dict[str, Any]]:
        keys = await list_keys(self.client, self.max_age_ms, self.prefix)
        fetched = await fetch_all(self.client, keys, self.max_age_ms)
        return [self._as_item(key[len(self.prefix):], obj) for key, obj in fetched]

    async def save(self, key: str, value: dict[str, Any]) -> str | None:
        return await self.client.store_object(self.type_alias, self.storage_key(key), value)

    async def delete(self, key: str) -> None:
        await self.client.remove(self.storage_key(key))


class DocumentScope(ScopeBinding):
    """Scope whose state is a single document stored under one key.

    An optimistic document (e.g. settings) shows a saved value in local
    state before the write completes; otherwise the value appears only
    once the store has accepted it (e.g. ai-config).
    """

    def __init__(
        self,
        name: str,
        client: ScopeClient,
        key: str,
        default: Any = None,
        max_age_ms: int | None = None,
        type_alias: str = "config",
        optimistic: bool = True,
    ) -> None:
        super().__init__(name, client)
        self.key = key
        self._default = default
        self.max_age_ms = max_age_ms
        self.type_alias = type_alias
        self.optimistic = optimistic

    @property
    def default(self) -> Any:
        return copy.deepcopy(self._default)

    async def load(self) -> Any:
        try:
            value = await self.client.get_object(self.key, self.max_age_ms)
        except Exception as e:
            if is_not_found_error(e):
                return copy.deepcopy(self._default)
            raise
        return copy.deepcopy(self._default) if value is None else value

    async def save(self, value: Any) -> str | None:
        return await self.client.store_object(self.type_alias, self.key, value)
