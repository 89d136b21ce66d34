"""FetchRouter: per-class caching strategies for intercepted requests.

Strategies by traffic class:
- tile (offline_first): fresh cache → network → stale cache → placeholder
- tile (network_first): network raced against a timeout → cache → error
- bulk-data: stale-while-revalidate
- identity: network-first, GET responses kept for offline use
- shell/other: cache-first for GET, root document for offline navigations
Non-GET requests outside the identity class pass straight through.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from domain.models import RequestKey, StoredResponse
from routing.classifier import DEFAULT_RULES, ClassifierRules, classify
from shared.constants import (
    APP_ORIGIN,
    HTTP_OK,
    ROOT_DOCUMENT,
    TILE_NETWORK_TIMEOUT_S,
    TRANSPARENT_PNG,
    PartitionKind,
    TileStrategyProfile,
    TrafficClass,
    default_tile_strategy,
)
from shared.errors import NetworkError, StorageError
from storage.writer import CacheWriter
from tiles.policy import TileCachePolicy

if TYPE_CHECKING:
    from domain.models import CacheRequest, CacheSettings
    from infrastructure.http.client import Network
    from storage.manager import CacheManager, Partition

logger = logging.getLogger(__name__)


class FetchRouter:
    """Classifies each request and runs the caching strategy of its class.

    Usage:
        router = FetchRouter(manager, network, policy=TileCachePolicy())
        response = await router.handle(CacheRequest('https://a.tile.openstreetmap.org/1/2/3.png'))
    """

    def __init__(
        self,
        manager: CacheManager,
        network: Network,
        *,
        policy: TileCachePolicy | None = None,
        rules: ClassifierRules = DEFAULT_RULES,
        tile_strategy: TileStrategyProfile = default_tile_strategy(),
        tile_timeout_s: float = TILE_NETWORK_TIMEOUT_S,
        origin: str = APP_ORIGIN,
        writer: CacheWriter | None = None,
    ) -> None:
        self.manager = manager
        self.network = network
        self.policy = policy or TileCachePolicy()
        self.rules = rules
        self.tile_strategy = TileStrategyProfile(tile_strategy)
        self.tile_timeout_s = tile_timeout_s
        self.origin = origin
        self.writer = writer or CacheWriter()
        self.root_key = RequestKey.for_url(ROOT_DOCUMENT, origin)
        self._stats_cache_hits = 0
        self._stats_cache_misses = 0
        self._stats_downloads = 0
        self._stats_errors = 0
        self._stats_fallbacks = 0
        self._stats_storage_errors = 0

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        manager: CacheManager,
        network: Network,
        *,
        policy: TileCachePolicy | None = None,
        writer: CacheWriter | None = None,
    ) -> FetchRouter:
        return cls(
            manager,
            network,
            policy=policy or TileCachePolicy.from_settings(settings),
            rules=ClassifierRules.from_settings(settings),
            tile_strategy=settings.tile_strategy,
            tile_timeout_s=settings.tile_network_timeout_s,
            origin=settings.app_origin,
            writer=writer,
        )

    @property
    def stats(self) -> dict:
        """Get router statistics."""
        return {
            'cache_hits': self._stats_cache_hits,
            'cache_misses': self._stats_cache_misses,
            'downloads': self._stats_downloads,
            'errors': self._stats_errors,
            'fallbacks': self._stats_fallbacks,
            'storage_errors': self._stats_storage_errors,
        }

    def classify(self, request: CacheRequest) -> TrafficClass:
        return classify(
            request.url,
            request.method,
            navigate=request.is_navigation,
            rules=self.rules,
        )

    async def handle(self, request: CacheRequest) -> StoredResponse:
        """Produce exactly one response for ``request``.

        Raises:
            NetworkError: When the class strategy has nothing to fall back to.
        """
        request = request.resolve(self.origin)
        traffic = self.classify(request)
        logger.debug('%s %s → %s', request.method, request.url, traffic.value)

        if traffic is TrafficClass.IDENTITY:
            return await self._handle_identity(request)
        if not request.is_get:
            return await self._fetch(request)

        key = RequestKey.for_request(request)
        if traffic is TrafficClass.TILE:
            if self.tile_strategy is TileStrategyProfile.NETWORK_FIRST:
                return await self._handle_tile_network_first(request, key)
            return await self._handle_tile_offline_first(request, key)
        if traffic is TrafficClass.BULK_DATA:
            return await self._handle_bulk_data(request, key)
        return await self._handle_default(request, key)

    # --- storage helpers: storage failures degrade to miss / skipped write

    async def _lookup(self, kind: PartitionKind, key: RequestKey) -> StoredResponse | None:
        try:
            partition = await self.manager.open(kind)
            return await partition.get(key)
        except StorageError as exc:
            self._stats_storage_errors += 1
            logger.warning('Cache read failed for %s: %s', key.url, exc)
            return None

    async def _store(self, kind: PartitionKind, key: RequestKey, response: StoredResponse) -> None:
        try:
            partition = await self.manager.open(kind)
            await partition.put(key, response)
        except StorageError as exc:
            self._stats_storage_errors += 1
            logger.warning('Cache write skipped for %s: %s', key.url, exc)

    def _store_later(self, kind: PartitionKind, key: RequestKey, response: StoredResponse) -> None:
        self.writer.spawn(self._store(kind, key, response), name=f'cache-put {key.url}')

    def _store_tile_later(self, key: RequestKey, response: StoredResponse) -> None:
        stored = self.policy.stamp(response)

        async def _write() -> None:
            try:
                partition = await self.manager.open(PartitionKind.TILE)
                await partition.put(key, stored)
            except StorageError as exc:
                self._stats_storage_errors += 1
                logger.warning('Error caching tile %s: %s', key.url, exc)
                return
            if self.policy.should_run_maintenance():
                self.writer.spawn(self._maintain_tiles(partition), name='tile-maintenance')

        self.writer.spawn(_write(), name=f'tile-put {key.url}')

    async def _maintain_tiles(self, partition: Partition) -> None:
        try:
            await self.policy.run_maintenance(partition)
        except Exception:
            logger.exception('Tile cache maintenance error')

    async def _fetch(self, request: CacheRequest) -> StoredResponse:
        try:
            response = await self.network.fetch(request)
        except NetworkError:
            self._stats_errors += 1
            raise
        self._stats_downloads += 1
        return response

    def _create_placeholder_tile(self) -> StoredResponse:
        """1x1 transparent PNG returned when a tile is unavailable."""
        return StoredResponse(
            status=HTTP_OK,
            status_text='OK',
            headers=(('Content-Type', 'image/png'), ('Cache-Control', 'no-cache')),
            body=TRANSPARENT_PNG,
        )

    # --- strategies

    async def _handle_tile_offline_first(self, request: CacheRequest, key: RequestKey) -> StoredResponse:
        cached = await self._lookup(PartitionKind.TILE, key)
        if cached is not None and self.policy.is_fresh(cached):
            self._stats_cache_hits += 1
            logger.debug('Serving cached tile: %s', request.url)
            return cached
        self._stats_cache_misses += 1

        try:
            response = await self._fetch(request)
        except NetworkError as exc:
            logger.info('Tile fetch error, checking cache: %s', exc)
            response = None

        if response is not None and response.status == HTTP_OK:
            self._store_tile_later(key, response)
            return response

        # Network down or non-200: any cached copy regardless of age
        if cached is None:
            cached = await self._lookup(PartitionKind.TILE, key)
        if cached is not None:
            self._stats_fallbacks += 1
            logger.info('Serving cached tile (offline): %s', request.url)
            return cached

        self._stats_fallbacks += 1
        logger.info('No cached tile available, returning transparent fallback: %s', request.url)
        return self._create_placeholder_tile()

    async def _handle_tile_network_first(self, request: CacheRequest, key: RequestKey) -> StoredResponse:
        cached = await self._lookup(PartitionKind.TILE, key)
        fetch_task = asyncio.ensure_future(self.network.fetch(request))
        done, _ = await asyncio.wait({fetch_task}, timeout=self.tile_timeout_s)

        response: StoredResponse | None = None
        failure: NetworkError
        if fetch_task in done:
            exc = fetch_task.exception()
            if exc is None:
                response = fetch_task.result()
                self._stats_downloads += 1
                if response.status == HTTP_OK:
                    self._store_tile_later(key, response)
                    return response
                failure = NetworkError(f'Tile fetch failed: {response.status}', url=request.url)
            elif isinstance(exc, NetworkError):
                failure = exc
            else:
                raise exc
        else:
            # Abandoned, not cancelled: a late result is ignored
            fetch_task.add_done_callback(_discard_late_result)
            failure = NetworkError(
                f'Tile fetch timed out after {self.tile_timeout_s:g}s', url=request.url
            )

        self._stats_errors += 1
        if cached is not None:
            self._stats_cache_hits += 1
            logger.info('Network failed, serving cached tile: %s', request.url)
            return cached
        self._stats_cache_misses += 1
        if response is not None:
            return response
        raise failure

    async def _handle_bulk_data(self, request: CacheRequest, key: RequestKey) -> StoredResponse:
        cached = await self._lookup(PartitionKind.DATA, key)
        if cached is not None:
            self._stats_cache_hits += 1
            self.writer.spawn(self._revalidate(request, key), name=f'revalidate {key.url}')
            return cached
        self._stats_cache_misses += 1
        return await self._fetch_and_store(request, key)

    async def _fetch_and_store(self, request: CacheRequest, key: RequestKey) -> StoredResponse:
        response = await self._fetch(request)
        if response.status == HTTP_OK:
            await self._store(PartitionKind.DATA, key, response)
        return response

    async def _revalidate(self, request: CacheRequest, key: RequestKey) -> None:
        try:
            await self._fetch_and_store(request, key)
        except NetworkError as exc:
            logger.info('Background refresh failed for %s: %s', request.url, exc)

    async def _handle_identity(self, request: CacheRequest) -> StoredResponse:
        try:
            response = await self._fetch(request)
        except NetworkError:
            if request.is_get:
                cached = await self._lookup(PartitionKind.DATA, RequestKey.for_request(request))
                if cached is not None:
                    self._stats_fallbacks += 1
                    return cached
            raise
        if response.ok and request.is_get:
            self._store_later(PartitionKind.DATA, RequestKey.for_request(request), response)
        return response

    async def _handle_default(self, request: CacheRequest, key: RequestKey) -> StoredResponse:
        cached = await self._lookup(PartitionKind.SHELL, key)
        if cached is not None:
            self._stats_cache_hits += 1
            return cached
        self._stats_cache_misses += 1

        try:
            response = await self._fetch(request)
        except NetworkError:
            if request.is_navigation:
                root = await self._lookup(PartitionKind.SHELL, self.root_key)
                if root is not None:
                    self._stats_fallbacks += 1
                    logger.info('Offline navigation, serving cached root for %s', request.url)
                    return root
            raise

        if response.status == HTTP_OK:
            await self._store(PartitionKind.SHELL, key, response)
        return response


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug('Late tile response discarded: %s', exc)
