"""
Record and batch types shared by the codec, the sync engine and the coordinator.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..exceptions import ValidationError

DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000

# 24h "HH:mm"; a single-digit hour is accepted
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant. A value without offset is taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("date", "not an ISO-8601 instant", str(value)) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def coerce_date(value: datetime | str | None) -> datetime | None:
    """Accept a datetime, an ISO-8601 string or None as a record date.

    Raises:
        ValidationError: For any other value
    """
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return parse_instant(value)
    raise ValidationError("date", "expected a datetime or ISO-8601 string", repr(value))


def check_time(value: str | None) -> str | None:
    """Validate a 24h "HH:mm" time of day; empty values become None.

    Raises:
        ValidationError: If the value does not match HH:mm
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not TIME_PATTERN.fullmatch(value):
        raise ValidationError("time", "expected 24h HH:mm", str(value))
    return value


class RecordStatus(Enum):
    """Lifecycle status of a record."""

    PENDING = "pending"
    DONE = "done"
    ARCHIVED = "archived"

    @classmethod
    def parse(cls, value: RecordStatus | str) -> RecordStatus:
        """Coerce a status string into a RecordStatus.

        Raises:
            ValidationError: If the value is not a known status
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError("status", "unknown status", str(value)) from None


@dataclass
class Record:
    """A single application record stored under its id in a scope.

    Attributes:
        id: Storage key; immutable once created
        text: Record text (the only required wire field)
        status: Stored status
        emoji: Optional emoji icon
        date: Optional target instant; ISO-8601 strings are parsed
        time: Optional 24h "HH:mm" time of day
        removed: Soft-delete marker
        completed: Optional completion flag; when set it overrides status
    """

    id: str
    text: str
    status: RecordStatus = RecordStatus.PENDING
    emoji: str | None = None
    date: datetime | None = None
    time: str | None = None
    removed: bool = False
    completed: bool | None = None

    def __post_init__(self) -> None:
        self.status = RecordStatus.parse(self.status)
        self.date = coerce_date(self.date)
        self.time = check_time(self.time)

    @property
    def effective_status(self) -> RecordStatus:
        """Status after applying the completion flag."""
        if self.completed is not None:
            return RecordStatus.DONE if self.completed else RecordStatus.PENDING
        return self.status

    @property
    def is_done(self) -> bool:
        return self.effective_status is RecordStatus.DONE

    def to_changes(self) -> dict[str, Any]:
        """All mutable fields, suitable as an update payload."""
        changes = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        changes.pop("id")
        return changes

    def merge(self, changes: Mapping[str, Any]) -> Record:
        """Shallow-merge changes onto a copy of this record.

        The id is never overwritten.

        Raises:
            ValidationError: If changes name a field records do not have,
                or carry an invalid status, date or time
        """
        known = {f.name for f in dataclasses.fields(self)}
        updates = {}
        for name, value in changes.items():
            if name == "id":
                continue
            if name not in known:
                raise ValidationError(name, "unknown record field")
            updates[name] = value
        return dataclasses.replace(self, **updates)


@dataclass
class RecordUpdate:
    """One item of a batch update: target id plus the fields to merge."""

    id: str
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class BatchItemError:
    """Failure of one item inside a batch."""

    id: str
    error: Exception

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "error": str(self.error)}


@dataclass
class BatchResult:
    """Result of a batch or reconciliation operation."""

    succeeded: int = 0
    failed: int = 0
    errors: list[BatchItemError] = field(default_factory=list)

    @classmethod
    def combine(cls, *results: BatchResult) -> BatchResult:
        """Sum counts and concatenate errors in argument order."""
        combined = cls()
        for result in results:
            combined.succeeded += result.succeeded
            combined.failed += result.failed
            combined.errors.extend(result.errors)
        return combined

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class LoadOptions:
    """Options for listing records.

    Attributes:
        max_age_ms: Maximum accepted age of cached reads (default: 24 hours)
        include_removed: Whether soft-deleted records are returned
    """

    max_age_ms: int = DEFAULT_MAX_AGE_MS
    include_removed: bool = False


@dataclass
class BatchOperationOptions:
    """Options for batch operations.

    Attributes:
        stop_on_error: Halt at the first failing item
        on_progress: Called with (completed, total) after each successful item
    """

    stop_on_error: bool = False
    on_progress: Callable[[int, int], None] | None = None


@dataclass
class ReconciliationPlan:
    """Three-way diff computed by replace_all."""

    to_add: list[Record] = field(default_factory=list)
    to_update: list[Record] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)

    @property
    def add_ids(self) -> list[str]:
        return [r.id for r in self.to_add]

    @property
    def update_ids(self) -> list[str]:
        return [r.id for r in self.to_update]
