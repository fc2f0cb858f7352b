"""
remoteStorage HTTP scope client.

Talks the remoteStorage protocol over aiohttp:

- GET    {storage_url}/{scope}/{key}   read a document (404 = absent)
- GET    {storage_url}/{scope}/        folder listing (JSON-LD "items" map)
- PUT    {storage_url}/{scope}/{key}   store a JSON document, returns ETag
- DELETE {storage_url}/{scope}/{key}   remove a document

Reads are cached in-process and served from cache while younger than
the caller's `max_age_ms`. The protocol has no push channel, so remote
changes are discovered by `poll_changes`, which diffs listing ETags
folder by folder.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import aiohttp

from ..exceptions import RecordNotFoundError, ScopeStorageError, StorageConnectionError
from .base import ChangeEvent, ChangeOrigin, ScopeClient

logger = logging.getLogger(__name__)

CONTEXT_BASE = "http://remotestorage.io/spec/modules"


@dataclass
class _CacheEntry:
    fetched_at: float
    value: Any
    etag: str | None = None


def _normalize_etag(etag: str | None) -> str | None:
    if not etag:
        return None
    return etag.removeprefix("W/").strip('"')


class RemoteStorageScopeClient(ScopeClient):
    """Scope client for a remoteStorage server.

    Example:
        >>> client = RemoteStorageScopeClient(
        ...     "https://storage.example.com/storage/alice",
        ...     "todonna",
        ...     bearer_token="token-123",
        ... )
        >>> listing = await client.get_listing()
        >>> await client.close()
    """

    def __init__(
        self,
        storage_url: str,
        scope: str,
        bearer_token: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            storage_url: Storage root of the user (without the scope)
            scope: Scope name; the first path segment below storage_url
            bearer_token: OAuth bearer token for the scope
            session: Shared aiohttp session; one is created if omitted
            timeout_s: Total timeout per HTTP request
            clock: Monotonic clock in seconds, used for cache ages
        """
        super().__init__(scope)
        self.base_url = f"{storage_url.rstrip('/')}/{scope}/"
        self.bearer_token = bearer_token
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None
        self._clock = clock

        self._objects: dict[str, _CacheEntry] = {}
        self._listings: dict[str, _CacheEntry] = {}
        self._known_etags: dict[str, str | None] | None = None
        self._known_folders: dict[str, str | None] = {}

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def _url(self, key: str) -> str:
        return self.base_url + quote(key, safe="/")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        data: str | None = None,
        content_type: str | None = None,
    ) -> tuple[int, Any, bytes]:
        """Perform one request and return (status, headers, body)."""
        session = await self._get_session()
        headers = self._headers()
        if content_type:
            headers["Content-Type"] = content_type
        try:
            async with session.request(method, url, data=data, headers=headers) as response:
                body = await response.read()
                return response.status, response.headers, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageConnectionError(url, e) from e

    def _is_fresh(self, entry: _CacheEntry | None, max_age_ms: int | None) -> bool:
        if entry is None:
            return False
        if max_age_ms is None:
            return True
        age_ms = (self._clock() - entry.fetched_at) * 1000
        return age_ms < max_age_ms

    def _decode(self, operation: str, key: str, body: bytes) -> Any:
        if not body:
            return None
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ScopeStorageError(operation, key, self.scope, cause=e) from e

    async def get_object(self, key: str, max_age_ms: int | None = None) -> Any | None:
        cached = self._objects.get(key)
        if self._is_fresh(cached, max_age_ms):
            return cached.value

        status, headers, body = await self._request("GET", self._url(key))
        if status == 404:
            self._objects.pop(key, None)
            raise RecordNotFoundError(key, self.scope)
        if status >= 400:
            raise ScopeStorageError("get_object", key, self.scope, status=status)

        value = self._decode("get_object", key, body)
        if isinstance(value, dict):
            value.pop("@context", None)
        self._objects[key] = _CacheEntry(self._clock(), value, _normalize_etag(headers.get("ETag")))
        return value

    async def get_listing(self, prefix: str = "", max_age_ms: int | None = None) -> dict[str, Any]:
        cached = self._listings.get(prefix)
        if self._is_fresh(cached, max_age_ms):
            return dict(cached.value)

        status, _, body = await self._request("GET", self._url(prefix))
        if status == 404:
            listing: dict[str, Any] = {}
        elif status >= 400:
            raise ScopeStorageError("get_listing", prefix, self.scope, status=status)
        else:
            data = self._decode("get_listing", prefix, body) or {}
            # Older servers return a flat {name: etag} map without "items"
            listing = data.get("items", data) if isinstance(data, dict) else {}
            listing = {k: v for k, v in listing.items() if not k.startswith("@")}

        self._listings[prefix] = _CacheEntry(self._clock(), listing)
        return dict(listing)

    async def store_object(self, type_alias: str, key: str, payload: dict[str, Any]) -> str | None:
        document = {"@context": f"{CONTEXT_BASE}/{self.scope}/{type_alias}", **payload}
        status, headers, _ = await self._request(
            "PUT",
            self._url(key),
            data=json.dumps(document),
            content_type="application/json; charset=UTF-8",
        )
        if status >= 400:
            raise ScopeStorageError("store_object", key, self.scope, status=status)

        etag = _normalize_etag(headers.get("ETag"))
        old = self._objects.get(key)
        self._objects[key] = _CacheEntry(self._clock(), dict(payload), etag)
        self._listings.clear()
        if self._known_etags is not None:
            self._known_etags[key] = etag

        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.LOCAL,
                revision=etag,
                old_value=old.value if old else None,
                new_value=payload,
            )
        )
        return etag

    async def remove(self, key: str) -> None:
        status, _, _ = await self._request("DELETE", self._url(key))
        if status >= 400 and status != 404:
            raise ScopeStorageError("remove", key, self.scope, status=status)

        old = self._objects.pop(key, None)
        self._listings.clear()
        if self._known_etags is not None:
            self._known_etags.pop(key, None)

        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.LOCAL,
                old_value=old.value if old else None,
            )
        )

    async def poll_changes(self) -> list[ChangeEvent]:
        """Detect changes made by other clients since the last poll.

        Every folder of the scope is walked, so documents at any depth are
        covered. The first call records a baseline and reports nothing.
        Writes made through this client are folded into the baseline and
        never reported.

        Returns:
            REMOTE change events, also delivered to subscribers
        """
        current, folders = await self._snapshot("")
        self._known_folders = folders

        if self._known_etags is None:
            self._known_etags = current
            return []

        events: list[ChangeEvent] = []
        for key, etag in current.items():
            if key not in self._known_etags or self._known_etags[key] != etag:
                events.append(
                    ChangeEvent(scope=self.scope, key=key, origin=ChangeOrigin.REMOTE, revision=etag)
                )
        for key in self._known_etags.keys() - current.keys():
            events.append(ChangeEvent(scope=self.scope, key=key, origin=ChangeOrigin.REMOTE))

        self._known_etags = current
        for event in events:
            self._objects.pop(event.key, None)
            logger.debug(f"Remote change detected: {self.scope}/{event.key}")
            await self._emit(event)
        return events

    async def _snapshot(self, prefix: str) -> tuple[dict[str, str | None], dict[str, str | None]]:
        """Document and folder ETags below `prefix`, keyed by full path.

        A folder whose ETag matches the previous poll is not descended
        into; its contents are carried over from the last snapshot.
        """
        documents: dict[str, str | None] = {}
        folders: dict[str, str | None] = {}
        listing = await self.get_listing(prefix, max_age_ms=0)

        for name, meta in listing.items():
            path = prefix + name
            etag = _normalize_etag(meta.get("ETag") if isinstance(meta, dict) else meta)
            if not name.endswith("/"):
                documents[path] = etag
                continue

            folders[path] = etag
            if etag is not None and self._known_etags is not None and self._known_folders.get(path) == etag:
                documents.update({k: v for k, v in self._known_etags.items() if k.startswith(path)})
                folders.update({k: v for k, v in self._known_folders.items() if k.startswith(path)})
                continue

            nested_documents, nested_folders = await self._snapshot(path)
            documents.update(nested_documents)
            folders.update(nested_folders)

        return documents, folders

    async def close(self) -> None:
        await super().close()
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
