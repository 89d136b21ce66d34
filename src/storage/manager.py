"""CacheManager: owner of the versioned shell, data and tile partitions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from domain.models import CacheVersions, RequestKey, StoredResponse
from shared.constants import PartitionKind
from storage.backends import CacheStorage

logger = logging.getLogger(__name__)


class Partition:
    """Handle to one named partition of the underlying storage.

    Handles are cheap; the partition itself lives in the storage backend.
    Errors from the backend propagate as StorageError.
    """

    def __init__(self, name: str, kind: PartitionKind | None, storage: CacheStorage) -> None:
        self.name = name
        self.kind = kind
        self._storage = storage

    def __repr__(self) -> str:
        return f'Partition({self.name!r})'

    async def get(self, key: RequestKey) -> StoredResponse | None:
        return await self._storage.get(self.name, key)

    async def put(self, key: RequestKey, response: StoredResponse) -> None:
        """Store ``response`` under ``key``, replacing any previous entry."""
        await self._storage.put(self.name, key, response)

    async def delete(self, key: RequestKey) -> bool:
        return await self._storage.delete(self.name, key)

    async def keys(self) -> list[RequestKey]:
        """Entry keys in insertion order (oldest first)."""
        return await self._storage.keys(self.name)

    async def count(self) -> int:
        return await self._storage.count(self.name)


class CacheManager:
    """Owns the three partitions of the current release.

    Constructed once per process and handed to the router, the lifecycle
    manager and the control channel.

    Usage:
        manager = CacheManager(MemoryStorage(), CacheVersions.from_release('aerafield', 'v2'))
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(key, response)
        await manager.sweep(manager.versions.as_set())
    """

    def __init__(self, storage: CacheStorage, versions: CacheVersions) -> None:
        self.storage = storage
        self.versions = versions
        self._open: dict[PartitionKind, Partition] = {}

    async def open(self, kind: PartitionKind) -> Partition:
        """Open (creating lazily) the current-version partition of ``kind``.

        Repeated calls return the same handle.
        """
        kind = PartitionKind(kind)
        partition = self._open.get(kind)
        if partition is None:
            partition = Partition(self.versions.name_for(kind), kind, self.storage)
            self._open[kind] = partition
        await self.storage.create_partition(partition.name)
        return partition

    def partition(self, name: str) -> Partition:
        """Handle to any partition by name, without creating it."""
        for partition in self._open.values():
            if partition.name == name:
                return partition
        return Partition(name, None, self.storage)

    async def partition_names(self) -> list[str]:
        return await self.storage.partition_names()

    async def delete_partition(self, name: str) -> bool:
        deleted = await self.storage.delete_partition(name)
        if deleted:
            logger.info('Deleted cache partition %s', name)
        return deleted

    async def delete_all(self) -> list[str]:
        """Delete every partition regardless of version."""
        names = await self.partition_names()
        for name in names:
            await self.delete_partition(name)
        return names

    async def sweep(self, current_versions: Iterable[str] | None = None) -> list[str]:
        """Delete every partition whose name is not in ``current_versions``.

        A failure to delete one partition is logged and skipped.

        Args:
            current_versions: Names to keep. Defaults to this manager's versions.

        Returns:
            Names of the partitions that were deleted.
        """
        keep = set(current_versions) if current_versions is not None else self.versions.as_set()
        deleted: list[str] = []
        for name in await self.partition_names():
            if name in keep:
                continue
            logger.info('Removing old cache %s', name)
            try:
                if await self.delete_partition(name):
                    deleted.append(name)
            except Exception:
                logger.exception('Failed to remove old cache %s', name)
        return deleted
