"""
Records: the model, its file format, and filesystem storage.
"""

from tbd.core.records.models import (
    FIELD_STRATEGIES,
    Dependency,
    MergeStrategy,
    Record,
    RecordKind,
    RecordStatus,
)
from tbd.core.records.parser import RecordFormatError, parse_record, serialize_record
from tbd.core.records.store import (
    RecordNotFoundError,
    RecordParseError,
    RecordStore,
    RecordStoreError,
)

__all__ = [
    "FIELD_STRATEGIES",
    "Dependency",
    "MergeStrategy",
    "Record",
    "RecordKind",
    "RecordStatus",
    "RecordFormatError",
    "parse_record",
    "serialize_record",
    "RecordNotFoundError",
    "RecordParseError",
    "RecordStore",
    "RecordStoreError",
]
