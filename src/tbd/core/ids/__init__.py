"""
Record identifiers.

Internal ids (``is-<ulid>``) are permanent; short ids (``bd-a7k2``) are for
people and are mapped to internal ids by IdMappingStore.
"""

from tbd.core.ids.generator import (
    generate_internal_id,
    generate_short_id,
    is_internal_id,
    normalize_internal_id,
)
from tbd.core.ids.mapping import (
    IdMappingError,
    IdMappingStore,
    IdNotFoundError,
    ShortIdExhaustedError,
)

__all__ = [
    "generate_internal_id",
    "generate_short_id",
    "is_internal_id",
    "normalize_internal_id",
    "IdMappingError",
    "IdMappingStore",
    "IdNotFoundError",
    "ShortIdExhaustedError",
]
