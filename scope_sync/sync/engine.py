"""
Synchronization engine for one scope.

Provides record-level operations on top of a ScopeClient:
- Single-record CRUD (add, update, remove, get)
- Listings with settle-all fan-out (get_all, get_by_date, count)
- Sequential batch operations with partial-failure reporting
- Full-collection reconciliation (replace_all)

The remote store is the source of truth. Nothing here locks, retries
or rolls back: concurrent updates to the same id resolve as
last-write-wins at the store, and replace_all may leave a scope
partially reconciled when one of its batches fails.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import date, datetime, tzinfo
from typing import Any, TypeVar

from ..exceptions import RecordNotFoundError, ValidationError
from ..logging_utils import ScopeLoggerAdapter
from ..records.codec import RecordCodec
from ..records.types import (
    BatchItemError,
    BatchOperationOptions,
    BatchResult,
    LoadOptions,
    ReconciliationPlan,
    Record,
    RecordStatus,
    RecordUpdate,
)
from ..scopes.base import ScopeClient, is_not_found_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def list_keys(client: ScopeClient, max_age_ms: int | None, prefix: str = "") -> list[str]:
    """List the full document keys under a prefix, skipping folder entries."""
    listing = await client.get_listing(prefix, max_age_ms)
    if not isinstance(listing, Mapping):
        return []
    return [prefix + key for key in listing if not key.endswith("/")]


async def fetch_all(
    client: ScopeClient,
    keys: Sequence[str],
    max_age_ms: int | None,
) -> list[tuple[str, Any]]:
    """Fetch every key concurrently and keep the ones that resolved.

    Every fetch runs to completion before results are aggregated. A key
    that fails or turns out to be absent is logged and dropped; it never
    aborts the whole call.

    Returns:
        (key, object) pairs in listing order
    """
    results = await asyncio.gather(
        *(client.get_object(key, max_age_ms) for key in keys),
        return_exceptions=True,
    )

    fetched: list[tuple[str, Any]] = []
    for key, result in zip(keys, results):
        if isinstance(result, Exception):
            if is_not_found_error(result):
                logger.debug(f"Listed key vanished before fetch: {client.scope}/{key}")
            else:
                logger.warning(
                    f"Dropping {client.scope}/{key} from listing: {result}",
                    extra={"scope": client.scope},
                )
            continue
        if isinstance(result, BaseException):
            raise result
        if result is None:
            continue
        fetched.append((key, result))
    return fetched


class SyncEngine:
    """Record operations over a single scope.

    Example:
        >>> engine = SyncEngine(InMemoryScopeClient("todos"))
        >>> await engine.add(Record(id="a", text="Buy milk"))
        >>> await engine.update("a", {"completed": True})
        >>> [r.status for r in await engine.get_all()]
        [<RecordStatus.DONE: 'done'>]
    """

    def __init__(
        self,
        client: ScopeClient,
        codec: RecordCodec | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Scope client to operate on
            codec: Record codec (default: RecordCodec)
            tz: Timezone defining calendar days for date queries
                (default: the system's local timezone)
        """
        self.client = client
        self.codec = codec or RecordCodec()
        self.tz = tz
        self._log = ScopeLoggerAdapter(logger, {"scope": client.scope})

    @property
    def scope(self) -> str:
        return self.client.scope

    # ==================== SINGLE RECORD ====================

    async def add(self, record: Record) -> str | None:
        """Store a record at its id, replacing anything already there.

        Returns:
            Revision reported by the store, if any
        """
        payload = self.codec.to_wire(record)
        return await self.client.store_object(self.codec.type_alias, record.id, payload)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> str | None:
        """Merge changes onto the current stored version of a record.

        The current version is always read fresh (max_age_ms=0). Two
        concurrent updates of the same id are not serialized; whichever
        write the store accepts last wins.

        Args:
            record_id: Id of the record to update
            changes: Fields to overwrite; an "id" entry is ignored

        Returns:
            Revision reported by the store, if any

        Raises:
            RecordNotFoundError: If no record exists at record_id (nothing is written)
            ValidationError: If the stored object or the changes are invalid
        """
        stored = await self._read(record_id, max_age_ms=0)
        if stored is None:
            raise RecordNotFoundError(record_id, self.scope)

        current = self.codec.from_wire(record_id, stored)
        updated = current.merge(changes)
        payload = self.codec.to_wire(updated)
        return await self.client.store_object(self.codec.type_alias, record_id, payload)

    async def remove(self, record_id: str) -> None:
        """Hard-delete a record. Use update(id, {"removed": True}) to soft-delete."""
        await self.client.remove(record_id)

    async def get(self, record_id: str, max_age_ms: int | None = None) -> Record | None:
        """Get a record by id.

        Returns:
            The decoded record, or None if absent or not decodable
        """
        stored = await self._read(record_id, max_age_ms)
        if stored is None:
            return None
        try:
            return self.codec.from_wire(record_id, stored)
        except ValidationError as e:
            self._log.debug(f"Stored object {record_id} is not a valid record: {e.message}")
            return None

    async def _read(self, key: str, max_age_ms: int | None) -> Any | None:
        try:
            return await self.client.get_object(key, max_age_ms)
        except Exception as e:
            if is_not_found_error(e):
                return None
            raise

    # ==================== LISTINGS ====================

    async def get_all(self, options: LoadOptions | None = None) -> list[Record]:
        """Get every record of the scope.

        Args:
            options: Freshness bound and soft-delete filtering

        Returns:
            Decoded records; undecodable or unreadable entries are skipped
        """
        options = options or LoadOptions()
        keys = await list_keys(self.client, options.max_age_ms)
        fetched = await fetch_all(self.client, keys, options.max_age_ms)

        records: list[Record] = []
        for key, stored in fetched:
            try:
                record = self.codec.from_wire(key, stored)
            except ValidationError as e:
                self._log.warning(f"Dropping invalid entry {key}: {e.message}")
                continue
            if options.include_removed or not record.removed:
                records.append(record)
        return records

    def local_day(self, value: date | datetime) -> date:
        """Calendar day of a date or instant in the engine's timezone."""
        if isinstance(value, datetime):
            return value.astimezone(self.tz).date()
        return value

    async def get_by_date(self, day: date | datetime, options: LoadOptions | None = None) -> list[Record]:
        """Get records whose date falls on the given local calendar day.

        Days are compared as wall-clock days in the engine's timezone, not
        as UTC dates. Records without a date never match.
        """
        target = self.local_day(day)
        records = await self.get_all(options)
        return [r for r in records if r.date is not None and self.local_day(r.date) == target]

    async def count(
        self,
        predicate: Callable[[Record], bool] | None = None,
        options: LoadOptions | None = None,
    ) -> int:
        """Count records, optionally only those matching predicate."""
        records = await self.get_all(options)
        if predicate is None:
            return len(records)
        return sum(1 for r in records if predicate(r))

    # ==================== BATCHES ====================

    async def _run_batch(
        self,
        operation: str,
        items: Sequence[T],
        id_of: Callable[[T], str],
        action: Callable[[T], Awaitable[Any]],
        options: BatchOperationOptions | None,
    ) -> BatchResult:
        """Apply action to each item strictly one after another.

        Item failures are recorded, never raised. With stop_on_error the
        remaining items are neither attempted nor counted.
        """
        options = options or BatchOperationOptions()
        result = BatchResult()
        total = len(items)

        for index, item in enumerate(items):
            item_id = id_of(item)
            try:
                await action(item)
            except Exception as e:
                result.failed += 1
                result.errors.append(BatchItemError(id=item_id, error=e))
                self._log.for_key(item_id).warning(f"{operation} failed for {item_id}: {e}")
                if options.stop_on_error:
                    break
                continue

            result.succeeded += 1
            if options.on_progress:
                options.on_progress(index + 1, total)

        return result

    async def batch_add(
        self,
        records: Sequence[Record],
        options: BatchOperationOptions | None = None,
    ) -> BatchResult:
        return await self._run_batch("add", records, lambda r: r.id, self.add, options)

    async def batch_update(
        self,
        updates: Sequence[RecordUpdate],
        options: BatchOperationOptions | None = None,
    ) -> BatchResult:
        return await self._run_batch(
            "update",
            updates,
            lambda u: u.id,
            lambda u: self.update(u.id, u.changes),
            options,
        )

    async def batch_remove(
        self,
        record_ids: Sequence[str],
        options: BatchOperationOptions | None = None,
    ) -> BatchResult:
        return await self._run_batch("remove", record_ids, lambda i: i, self.remove, options)

    # ==================== RECONCILIATION ====================

    async def plan_replace_all(self, records: Iterable[Record]) -> ReconciliationPlan:
        """Compute the add/update/remove diff between the scope and records.

        The snapshot includes soft-deleted records. When records repeats
        an id, the last occurrence wins.
        """
        wanted: dict[str, Record] = {}
        for record in records:
            wanted[record.id] = record

        existing = await self.get_all(LoadOptions(include_removed=True))
        existing_ids = {r.id for r in existing}

        plan = ReconciliationPlan()
        for record_id, record in wanted.items():
            if record_id in existing_ids:
                plan.to_update.append(record)
            else:
                plan.to_add.append(record)

        seen: set[str] = set()
        for record in existing:
            if record.id not in wanted and record.id not in seen:
                plan.to_remove.append(record.id)
                seen.add(record.id)
        return plan

    async def replace_all(self, records: Iterable[Record]) -> BatchResult:
        """Make the scope hold exactly the given records.

        Ids only in the scope are removed, ids only in records are added,
        and ids in both are updated (even when unchanged). The three
        batches run concurrently, each one sequentially.

        Not transactional: if a batch fails part-way the scope is left
        partially reconciled and the caller must reconcile again.

        Returns:
            Summed counts with add, update and remove errors concatenated
        """
        plan = await self.plan_replace_all(records)
        self._log.info(
            f"replace_all: {len(plan.to_add)} to add, {len(plan.to_update)} to update, "
            f"{len(plan.to_remove)} to remove"
        )

        add_result, update_result, remove_result = await asyncio.gather(
            self.batch_add(plan.to_add),
            self.batch_update([RecordUpdate(r.id, r.to_changes()) for r in plan.to_update]),
            self.batch_remove(plan.to_remove),
        )

        result = BatchResult.combine(add_result, update_result, remove_result)
        if not result.ok:
            self._log.warning(
                f"replace_all left scope partially reconciled: {result.failed} of "
                f"{result.failed + result.succeeded} operations failed"
            )
        return result

    # ==================== CLEARING ====================

    async def _clear_by_date(self, day: date | datetime, keep: Callable[[Record], bool]) -> int:
        records = await self.get_by_date(day)
        result = await self.batch_remove([r.id for r in records if keep(r)])
        return result.succeeded

    async def clear_by_date(self, day: date | datetime) -> int:
        """Remove every record dated on day. Returns the number removed."""
        return await self._clear_by_date(day, lambda r: True)

    async def clear_completed_by_date(self, day: date | datetime) -> int:
        """Remove done records dated on day. Returns the number removed."""
        return await self._clear_by_date(day, lambda r: r.effective_status is RecordStatus.DONE)

    async def clear_incomplete_by_date(self, day: date | datetime) -> int:
        """Remove pending records dated on day. Returns the number removed."""
        return await self._clear_by_date(
            day, lambda r: r.effective_status is RecordStatus.PENDING
        )
