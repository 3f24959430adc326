from .category import Category, TaxonomyFile, TaxonomySnapshot
from .memory import MemoryPayload, MemoryRecord, MemorySource, MemoryStats, ScoredMemory
from .utils import iso_now, parse_timestamp, utc_now

__all__ = [
    "Category",
    "MemoryPayload",
    "MemoryRecord",
    "MemorySource",
    "MemoryStats",
    "ScoredMemory",
    "TaxonomyFile",
    "TaxonomySnapshot",
    "iso_now",
    "parse_timestamp",
    "utc_now",
]
