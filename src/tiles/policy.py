"""Bounded storage policy for the tile partition.

Two profiles:
- bounded_age: entry ceiling with bulk FIFO eviction plus a maximum age,
  tracked through a ``sw-cached-time`` header (epoch ms) added on write.
- count_only: the same entry ceiling, no expiry and no extra header.

FIFO by insertion order stands in for LRU. The storage has no cheap
per-access timestamps and tiles are rarely revisited, so the oldest
write is treated as the least recently used entry.
"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from shared.constants import (
    CACHED_TIME_HEADER,
    TILE_CACHE_EVICT_FRACTION,
    TILE_CACHE_MAX_AGE_DAYS,
    TILE_CACHE_MAX_ENTRIES,
    TILE_MAINTENANCE_RATE,
    TilePolicyProfile,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from domain.models import CacheSettings, StoredResponse
    from storage.manager import Partition

logger = logging.getLogger(__name__)

_MS_PER_DAY = 24 * 60 * 60 * 1000


@dataclass
class MaintenanceReport:
    """Outcome of one maintenance pass over the tile partition."""

    scanned: int
    evicted: int
    expired: int

    @property
    def removed(self) -> int:
        return self.evicted + self.expired


class TileCachePolicy:
    """Entry ceiling, optional expiry and the probabilistic maintenance trigger.

    Usage:
        policy = TileCachePolicy(max_age_days=7)
        stored = policy.stamp(response)
        if policy.is_fresh(cached): ...
        if policy.should_run_maintenance():
            await policy.run_maintenance(tile_partition)
    """

    def __init__(
        self,
        *,
        max_entries: int = TILE_CACHE_MAX_ENTRIES,
        evict_fraction: float = TILE_CACHE_EVICT_FRACTION,
        max_age_days: float | None = TILE_CACHE_MAX_AGE_DAYS,
        maintenance_rate: float = TILE_MAINTENANCE_RATE,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the policy.

        Args:
            max_entries: Entry ceiling of the tile partition.
            evict_fraction: Share of entries removed when the ceiling is exceeded.
            max_age_days: Maximum tile age; None disables expiry (count_only).
            maintenance_rate: Probability of a maintenance pass after a write.
            rng: Randomness source for the maintenance trigger.
            clock: Returns the current time in seconds since the epoch.
        """
        self.max_entries = max_entries
        self.evict_fraction = evict_fraction
        self.max_age_days = max_age_days
        self.maintenance_rate = maintenance_rate
        self._rng = rng or random.Random()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> TileCachePolicy:
        return cls(
            max_entries=settings.tile_max_entries,
            evict_fraction=settings.tile_evict_fraction,
            max_age_days=settings.tile_max_age_days if settings.expiry_enabled else None,
            maintenance_rate=settings.tile_maintenance_rate,
            rng=rng,
            clock=clock,
        )

    @property
    def profile(self) -> TilePolicyProfile:
        if self.expiry_enabled:
            return TilePolicyProfile.BOUNDED_AGE
        return TilePolicyProfile.COUNT_ONLY

    @property
    def expiry_enabled(self) -> bool:
        return self.max_age_days is not None

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def expiry_threshold_ms(self) -> int:
        """Entries cached before this instant (epoch ms) are expired.

        Raises:
            RuntimeError: If the policy has no maximum age (count_only).
        """
        if self.max_age_days is None:
            msg = 'count_only tile policy has no expiry threshold'
            raise RuntimeError(msg)
        return self.now_ms() - int(self.max_age_days * _MS_PER_DAY)

    def stamp(self, response: StoredResponse) -> StoredResponse:
        """Prepare a network response for storage in the tile partition."""
        if not self.expiry_enabled:
            return response
        return response.with_header(CACHED_TIME_HEADER, str(self.now_ms()))

    def cached_time_ms(self, response: StoredResponse) -> int | None:
        raw = response.header(CACHED_TIME_HEADER)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def is_fresh(self, response: StoredResponse) -> bool:
        """Whether a cached tile may be served without asking the network.

        Without expiry every cached tile is fresh. With expiry a tile is
        fresh only if it carries a cached-time newer than the threshold.
        """
        if not self.expiry_enabled:
            return True
        cached_at = self.cached_time_ms(response)
        return cached_at is not None and cached_at > self.expiry_threshold_ms()

    def should_run_maintenance(self) -> bool:
        return self._rng.random() < self.maintenance_rate

    def eviction_count(self, total: int) -> int:
        """Number of oldest entries to drop for a partition of ``total`` entries."""
        if total <= self.max_entries:
            return 0
        return math.floor(total * self.evict_fraction)

    async def run_maintenance(self, partition: Partition) -> MaintenanceReport:
        """Enforce the ceiling, then drop expired entries.

        Returns:
            MaintenanceReport with the number of removed entries.
        """
        keys = await partition.keys()
        scanned = len(keys)
        to_evict = self.eviction_count(scanned)
        if to_evict:
            logger.info(
                'Tile cache exceeded %d entries (%d), evicting oldest %d',
                self.max_entries,
                scanned,
                to_evict,
            )
            for key in keys[:to_evict]:
                await partition.delete(key)
        keys = keys[to_evict:]

        expired = 0
        if self.expiry_enabled:
            threshold = self.expiry_threshold_ms()
            for key in keys:
                cached = await partition.get(key)
                if cached is None:
                    continue
                cached_at = self.cached_time_ms(cached)
                if cached_at is not None and cached_at < threshold:
                    if await partition.delete(key):
                        expired += 1
            if expired:
                logger.info('Tile cache: removed %d expired entries', expired)

        return MaintenanceReport(scanned=scanned, evicted=to_evict, expired=expired)
