"""
Record model and wire codec.
"""

from .codec import TYPE_ALIAS, RecordCodec, format_instant, parse_instant
from .types import (
    DEFAULT_MAX_AGE_MS,
    BatchItemError,
    BatchOperationOptions,
    BatchResult,
    LoadOptions,
    ReconciliationPlan,
    Record,
    RecordStatus,
    RecordUpdate,
)

__all__ = [
    "DEFAULT_MAX_AGE_MS",
    "TYPE_ALIAS",
    "BatchItemError",
    "BatchOperationOptions",
    "BatchResult",
    "LoadOptions",
    "ReconciliationPlan",
    "Record",
    "RecordCodec",
    "RecordStatus",
    "RecordUpdate",
    "format_instant",
    "parse_instant",
]
