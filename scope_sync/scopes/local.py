"""
Local file-based scope client.

Stores each object as a JSON document on disk:

    {base_path}/
      {scope}/
        {quoted key}.json    {"revision": ..., "type": ..., "data": {...}}

Reads always hit the disk, so `max_age_ms` has no effect here.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

from ..exceptions import RecordNotFoundError, ScopeStorageError
from .base import ChangeEvent, ChangeOrigin, ScopeClient

_SUFFIX = ".json"


class LocalFileScopeClient(ScopeClient):
    """Scope client persisting objects as JSON files."""

    def __init__(self, base_path: Path | str, scope: str) -> None:
        """Initialize local scope storage.

        Args:
            base_path: Root directory shared by all scopes
            scope: Scope name; becomes a subdirectory of base_path
        """
        super().__init__(scope)
        self.base_path = Path(base_path)
        self.scope_dir = self.base_path / scope

    def _path_for(self, key: str) -> Path:
        return self.scope_dir / f"{quote(key, safe='')}{_SUFFIX}"

    async def _read_document(self, key: str) -> dict[str, Any]:
        path = self._path_for(key)
        if not await aiofiles.os.path.exists(path):
            raise RecordNotFoundError(key, self.scope)
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError) as e:
            raise ScopeStorageError("get_object", key, self.scope, cause=e) from e

    async def get_object(self, key: str, max_age_ms: int | None = None) -> Any | None:
        document = await self._read_document(key)
        return document.get("data")

    async def get_listing(self, prefix: str = "", max_age_ms: int | None = None) -> dict[str, Any]:
        if not await aiofiles.os.path.isdir(self.scope_dir):
            return {}
        try:
            names = await aiofiles.os.listdir(self.scope_dir)
        except OSError as e:
            raise ScopeStorageError("get_listing", prefix, self.scope, cause=e) from e

        listing: dict[str, Any] = {}
        for name in sorted(names):
            if not name.endswith(_SUFFIX):
                continue
            key = unquote(name[: -len(_SUFFIX)])
            if not key.startswith(prefix):
                continue
            child, sep, _ = key[len(prefix):].partition("/")
            if sep:
                listing.setdefault(child + "/", {})
            else:
                listing[child] = {"path": str(self.scope_dir / name)}
        return listing

    async def store_object(self, type_alias: str, key: str, payload: dict[str, Any]) -> str | None:
        path = self._path_for(key)
        revision = uuid.uuid4().hex
        document = {
            "revision": revision,
            "type": type_alias,
            "updated": datetime.now(UTC).isoformat(),
            "data": payload,
        }

        old_value = None
        if await aiofiles.os.path.exists(path):
            try:
                old_value = (await self._read_document(key)).get("data")
            except ScopeStorageError:
                old_value = None

        tmp_path = path.with_suffix(".tmp")
        try:
            await aiofiles.os.makedirs(self.scope_dir, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise ScopeStorageError("store_object", key, self.scope, cause=e) from e

        await self._emit(
            ChangeEvent(
                scope=self.scope,
                key=key,
                origin=ChangeOrigin.LOCAL,
                revision=revision,
                old_value=old_value,
                new_value=payload,
            )
        )
        return revision

    async def remove(self, key: str) -> None:
        path = self._path_for(key)
        if not await aiofiles.os.path.exists(path):
            return
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise ScopeStorageError("remove", key, self.scope, cause=e) from e

        await self._emit(ChangeEvent(scope=self.scope, key=key, origin=ChangeOrigin.LOCAL))
