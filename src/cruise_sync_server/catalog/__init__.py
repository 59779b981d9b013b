"""Reference catalog access (lines, ships, regions, ports)."""

from .cache import CacheStats, ReferenceDataCache
from .reader import CatalogItem, CatalogReader

__all__ = [
    "CacheStats",
    "CatalogItem",
    "CatalogReader",
    "ReferenceDataCache",
]
