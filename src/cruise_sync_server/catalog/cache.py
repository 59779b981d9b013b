"""TTL cache over the reference catalogs.

Lines, regions and ports are single-entry caches.  Ships are cached per
``cruise_line_id`` filter (``"all"`` when unfiltered) in a bounded map:
once ``max_ship_entries`` keys are held, adding another evicts the key
that was inserted first, regardless of how recently it was read.

Reads go through one lock so concurrent misses on the same entry cost a
single store query.  ``refresh_cache`` loads a complete replacement
outside the lock and swaps it in, so readers never see a half-filled
cache.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel

from ..errors import CatalogMissingError
from .reader import CatalogItem, CatalogReader

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALL_SHIPS_KEY = "all"
DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_SHIP_ENTRIES = 10


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    data: T
    expires_at: float


@dataclass
class _CacheState:
    lines: CacheEntry[list[CatalogItem]] | None = None
    regions: CacheEntry[list[CatalogItem]] | None = None
    ports: CacheEntry[list[CatalogItem]] | None = None
    # dict keeps insertion order, which drives eviction
    ships: dict[str, CacheEntry[list[CatalogItem]]] = field(
        default_factory=dict
    )


class CacheStats(BaseModel):
    cruise_lines: int
    cruise_ships: int
    ship_keys: int
    cruise_regions: int
    cruise_ports: int
    total_entries: int
    max_ship_entries: int
    ttl_seconds: float
    hits: int
    misses: int
    hit_rate: float

    model_config = {"frozen": True}


def _ship_key(cruise_line_id: int | None) -> str:
    return ALL_SHIPS_KEY if cruise_line_id is None else str(cruise_line_id)


def _count(entry: CacheEntry[list[CatalogItem]] | None) -> int:
    return len(entry.data) if entry is not None else 0


class ReferenceDataCache:
    """Bounded TTL cache in front of ``CatalogReader``.

    Args:
        reader: Store query layer.
        ttl_seconds: Lifetime of each cache entry.
        max_ship_entries: Maximum number of ship filter keys kept.
        clock: Monotonic time source (injected by tests).
    """

    def __init__(
        self,
        reader: CatalogReader,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_ship_entries: int = DEFAULT_MAX_SHIP_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_ship_entries < 1:
            raise ValueError("max_ship_entries must be at least 1")
        self.reader = reader
        self.ttl_seconds = ttl_seconds
        self.max_ship_entries = max_ship_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._state = _CacheState()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fresh(self, entry: CacheEntry | None) -> bool:
        return entry is not None and entry.expires_at > self._clock()

    def _new_entry(self, data: list[CatalogItem]) -> CacheEntry:
        return CacheEntry(data=data, expires_at=self._clock() + self.ttl_seconds)

    def _load(
        self, loader: Callable[[], list[CatalogItem]], label: str
    ) -> list[CatalogItem]:
        try:
            return loader()
        except CatalogMissingError as exc:
            logger.warning("%s, treating %s as empty", exc, label)
            return []

    def _get_single(
        self, attr: str, loader: Callable[[], list[CatalogItem]]
    ) -> list[CatalogItem]:
        with self._lock:
            entry = getattr(self._state, attr)
            if self._fresh(entry):
                self._hits += 1
                return entry.data
            self._misses += 1
            data = self._load(loader, attr)
            setattr(self._state, attr, self._new_entry(data))
            return data

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    def get_cruise_lines(self) -> list[CatalogItem]:
        return self._get_single("lines", self.reader.load_cruise_lines)

    def get_cruise_regions(self) -> list[CatalogItem]:
        return self._get_single("regions", self.reader.load_cruise_regions)

    def get_cruise_ports(self) -> list[CatalogItem]:
        return self._get_single("ports", self.reader.load_cruise_ports)

    def get_cruise_ships(
        self, cruise_line_id: int | None = None
    ) -> list[CatalogItem]:
        key = _ship_key(cruise_line_id)
        with self._lock:
            ships = self._state.ships
            entry = ships.get(key)
            if self._fresh(entry):
                self._hits += 1
                return entry.data

            self._misses += 1
            data = self._load(
                lambda: self.reader.load_cruise_ships(cruise_line_id), "ships"
            )
            if key in ships:
                # Expired key is refreshed in place, keeping its position
                ships[key] = self._new_entry(data)
                return data

            while len(ships) >= self.max_ship_entries:
                oldest = next(iter(ships))
                del ships[oldest]
                logger.debug("Evicted ship cache key %s", oldest)
            ships[key] = self._new_entry(data)
            return data

    # ------------------------------------------------------------------
    # Provider identifier lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _find(items: list[CatalogItem], provider_identifier: str | None) -> int | None:
        if not provider_identifier:
            return None
        for item in items:
            if item.provider_identifier == provider_identifier:
                return item.id
        return None

    def line_id_for(self, provider_identifier: str | None) -> int | None:
        return self._find(self.get_cruise_lines(), provider_identifier)

    def ship_id_for(self, provider_identifier: str | None) -> int | None:
        return self._find(self.get_cruise_ships(), provider_identifier)

    def region_id_for(self, provider_identifier: str | None) -> int | None:
        return self._find(self.get_cruise_regions(), provider_identifier)

    def port_id_for(self, provider_identifier: str | None) -> int | None:
        return self._find(self.get_cruise_ports(), provider_identifier)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def refresh_cache(self) -> CacheStats:
        """Reload every catalog type and swap the result in at once.

        Ships are reloaded under the ``"all"`` key only; filtered keys
        repopulate lazily.
        """
        fresh = _CacheState(
            lines=self._new_entry(
                self._load(self.reader.load_cruise_lines, "lines")
            ),
            regions=self._new_entry(
                self._load(self.reader.load_cruise_regions, "regions")
            ),
            ports=self._new_entry(
                self._load(self.reader.load_cruise_ports, "ports")
            ),
            ships={
                ALL_SHIPS_KEY: self._new_entry(
                    self._load(self.reader.load_cruise_ships, "ships")
                )
            },
        )
        with self._lock:
            self._state = fresh
        stats = self.stats()
        logger.info(
            "Reference cache refreshed: %d lines, %d ships, %d regions, %d ports",
            stats.cruise_lines,
            stats.cruise_ships,
            stats.cruise_regions,
            stats.cruise_ports,
        )
        return stats

    def clear(self) -> None:
        """Drop every entry and zero the hit/miss counters."""
        with self._lock:
            self._state = _CacheState()
            self._hits = 0
            self._misses = 0
        logger.info("Reference cache cleared")

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            state = self._state
            lines = _count(state.lines)
            regions = _count(state.regions)
            ports = _count(state.ports)
            ships = sum(len(entry.data) for entry in state.ships.values())
            requests = self._hits + self._misses
            return CacheStats(
                cruise_lines=lines,
                cruise_ships=ships,
                ship_keys=len(state.ships),
                cruise_regions=regions,
                cruise_ports=ports,
                total_entries=lines + ships + regions + ports,
                max_ship_entries=self.max_ship_entries,
                ttl_seconds=self.ttl_seconds,
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / requests if requests else 0.0,
            )

    def ship_keys(self) -> list[str]:
        """Cached ship filter keys, oldest first."""
        with self._lock:
            return list(self._state.ships)
