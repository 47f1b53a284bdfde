"""Record and value normalization."""

from roster_merge.normalization.records import FIELD_ALIASES, SourceRecordNormalizer
from roster_merge.normalization.values import (
    is_empty,
    normalize_name,
    normalize_phone,
    normalize_value,
)

__all__ = [
    "FIELD_ALIASES",
    "SourceRecordNormalizer",
    "is_empty",
    "normalize_name",
    "normalize_phone",
    "normalize_value",
]
