"""
Record <-> wire object mapping.

Records are stored in the Todonna item format. The backend schema only
requires the text field, so optional fields are left out of the payload
entirely instead of being written as empty values.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..exceptions import ValidationError
from .types import Record, RecordStatus, check_time, coerce_date, parse_instant

TYPE_ALIAS = "todonna-item"

ID_FIELD = "todo_item_id"
TEXT_FIELD = "todo_item_text"
STATUS_FIELD = "todo_item_status"


def format_instant(value: datetime) -> str:
    """Serialize a datetime as an ISO-8601 UTC instant (ms precision, Z suffix).

    Naive datetimes are interpreted as local wall-clock time.
    """
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RecordCodec:
    """Stateless mapping between Record and its wire representation."""

    type_alias = TYPE_ALIAS

    def to_wire(self, record: Record) -> dict[str, Any]:
        item: dict[str, Any] = {
            ID_FIELD: record.id,
            TEXT_FIELD: record.text,
        }

        # completed overrides any stored status
        item[STATUS_FIELD] = record.effective_status.value

        if record.emoji:
            item["emoji"] = record.emoji
        if record.date is not None:
            item["date"] = format_instant(coerce_date(record.date))
        if record.time:
            item["time"] = check_time(record.time)
        if record.removed:
            item["removed"] = True

        return item

    def from_wire(self, key: str, obj: Any) -> Record:
        """Decode a stored object.

        Args:
            key: Storage key, used as id for entries written without one
            obj: Stored wire object

        Raises:
            ValidationError: If the object is not a mapping, lacks text, or
                carries a malformed status, date or time
        """
        if not isinstance(obj, Mapping):
            raise ValidationError(TEXT_FIELD, "stored object is not a mapping")
        if TEXT_FIELD not in obj or obj[TEXT_FIELD] is None:
            raise ValidationError(TEXT_FIELD, "required field missing")

        legacy_completed = obj.get("completed")
        if isinstance(legacy_completed, bool):
            status = RecordStatus.DONE if legacy_completed else RecordStatus.PENDING
        elif obj.get(STATUS_FIELD):
            status = RecordStatus.parse(obj[STATUS_FIELD])
        else:
            status = RecordStatus.PENDING

        date = obj.get("date")

        return Record(
            id=obj.get(ID_FIELD) or key,
            text=str(obj[TEXT_FIELD]),
            status=status,
            emoji=obj.get("emoji") or None,
            date=parse_instant(date) if date else None,
            time=obj.get("time") or None,
            removed=bool(obj.get("removed", False)),
        )
