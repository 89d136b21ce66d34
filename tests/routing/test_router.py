"""Tests for FetchRouter caching strategies."""

from __future__ import annotations

import asyncio

import pytest

from domain.models import CacheRequest, CacheSettings, RequestKey, StoredResponse
from routing.router import FetchRouter
from shared.constants import (
    CACHED_TIME_HEADER,
    TRANSPARENT_PNG,
    PartitionKind,
    TileStrategyProfile,
)
from shared.errors import NetworkError, StorageError
from storage.backends import MemoryStorage
from storage.manager import CacheManager
from tiles.policy import TileCachePolicy

TILE_URL = 'https://a.tile.openstreetmap.org/15/100/200.png'
DATA_URL = 'http://localhost:3000/data/fields.geojson'
AUTH_URL = 'https://xyz.supabase.co/rest/v1/profiles'
DAY_S = 24 * 60 * 60


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStorage(MemoryStorage):
    """Storage whose reads and writes always fail."""

    async def get(self, name, key):
        msg = 'read failed'
        raise StorageError(msg)

    async def put(self, name, key, response):
        msg = 'write failed'
        raise StorageError(msg)


@pytest.fixture
def make_router(manager, network, never_maintain_policy):
    def _make(**kwargs) -> FetchRouter:
        kwargs.setdefault('policy', never_maintain_policy)
        return FetchRouter(kwargs.pop('manager', manager), network, **kwargs)

    return _make


async def _cancel_stray_tasks() -> None:
    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def _cached(manager, kind, url):
    partition = await manager.open(kind)
    return await partition.get(RequestKey.for_url(url))


class TestOfflineFirstTiles:
    """Default tile strategy: fresh cache, network, stale cache, placeholder."""

    @pytest.mark.asyncio
    async def test_tile_reused_when_offline(self, make_router, network):
        router = make_router()
        network.add(TILE_URL, body=b'tile-bytes', headers=(('Content-Type', 'image/png'),))

        first = await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()
        network.offline = True
        second = await router.handle(CacheRequest(TILE_URL))

        assert first.body == b'tile-bytes'
        assert second.body == b'tile-bytes'
        assert second.header(CACHED_TIME_HEADER) is not None
        assert network.calls_to(TILE_URL) == 1

    @pytest.mark.asyncio
    async def test_placeholder_when_nothing_available(self, make_router, network):
        router = make_router()
        network.offline = True

        response = await router.handle(CacheRequest(TILE_URL))

        assert response.status == 200
        assert response.header('Content-Type') == 'image/png'
        assert response.header('Cache-Control') == 'no-cache'
        assert response.body == TRANSPARENT_PNG
        assert router.stats['fallbacks'] == 1

    @pytest.mark.asyncio
    async def test_stale_tile_refreshed_from_network(self, make_router, manager, network):
        clock = FakeClock()
        policy = TileCachePolicy(maintenance_rate=0.0, clock=clock)
        router = make_router(policy=policy)
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(RequestKey.for_url(TILE_URL), policy.stamp(StoredResponse(200, body=b'old')))
        clock.now += 8 * DAY_S
        network.add(TILE_URL, body=b'new')

        response = await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()

        assert response.body == b'new'
        assert (await tiles.get(RequestKey.for_url(TILE_URL))).body == b'new'

    @pytest.mark.asyncio
    async def test_stale_tile_served_when_offline(self, make_router, manager, network):
        clock = FakeClock()
        policy = TileCachePolicy(maintenance_rate=0.0, clock=clock)
        router = make_router(policy=policy)
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(RequestKey.for_url(TILE_URL), policy.stamp(StoredResponse(200, body=b'old')))
        clock.now += 30 * DAY_S
        network.fail(TILE_URL)

        response = await router.handle(CacheRequest(TILE_URL))
        assert response.body == b'old'

    @pytest.mark.asyncio
    async def test_non_200_not_cached_and_falls_back(self, make_router, manager, network):
        router = make_router()
        network.add(TILE_URL, status=503, body=b'busy')

        response = await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()

        assert response.body == TRANSPARENT_PNG
        assert await _cached(manager, PartitionKind.TILE, TILE_URL) is None

    @pytest.mark.asyncio
    async def test_count_only_serves_any_cached_tile(self, make_router, manager, network):
        router = make_router(policy=TileCachePolicy(max_age_days=None, maintenance_rate=0.0))
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(RequestKey.for_url(TILE_URL), StoredResponse(200, body=b'cached'))

        response = await router.handle(CacheRequest(TILE_URL))

        assert response.body == b'cached'
        assert network.calls == []

    @pytest.mark.asyncio
    async def test_maintenance_bounds_partition(self, make_router, manager, network):
        policy = TileCachePolicy(max_entries=2, evict_fraction=0.5, max_age_days=None, maintenance_rate=1.0)
        router = make_router(policy=policy)
        urls = [f'https://a.tile.openstreetmap.org/15/{n}/1.png' for n in range(3)]
        for url in urls:
            network.add(url, body=url.encode())
            await router.handle(CacheRequest(url))
            await router.writer.drain()

        tiles = await manager.open(PartitionKind.TILE)
        assert await tiles.keys() == [RequestKey.for_url(u) for u in urls[1:]]


class TestNetworkFirstTiles:
    """Tile strategy racing the network against a timeout."""

    @pytest.mark.asyncio
    async def test_fresh_response_cached(self, make_router, manager, network):
        router = make_router(tile_strategy=TileStrategyProfile.NETWORK_FIRST)
        network.add(TILE_URL, body=b'net')

        response = await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()

        assert response.body == b'net'
        assert (await _cached(manager, PartitionKind.TILE, TILE_URL)).body == b'net'

    @pytest.mark.asyncio
    async def test_timeout_serves_cache(self, make_router, manager, network):
        router = make_router(tile_strategy=TileStrategyProfile.NETWORK_FIRST, tile_timeout_s=0.05)
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(RequestKey.for_url(TILE_URL), StoredResponse(200, body=b'cached'))
        network.add(TILE_URL, body=b'late', delay=10)

        response = await asyncio.wait_for(router.handle(CacheRequest(TILE_URL)), 1.0)

        assert response.body == b'cached'
        assert router.stats['errors'] == 1
        await _cancel_stray_tasks()

    @pytest.mark.asyncio
    async def test_timeout_without_cache_raises(self, make_router, network):
        router = make_router(tile_strategy=TileStrategyProfile.NETWORK_FIRST, tile_timeout_s=0.05)
        network.add(TILE_URL, body=b'late', delay=10)

        with pytest.raises(NetworkError, match='timed out'):
            await router.handle(CacheRequest(TILE_URL))
        await _cancel_stray_tasks()

    @pytest.mark.asyncio
    async def test_non_200_without_cache_returned(self, make_router, network):
        router = make_router(tile_strategy=TileStrategyProfile.NETWORK_FIRST)
        network.add(TILE_URL, status=404)

        response = await router.handle(CacheRequest(TILE_URL))
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_connection_error_serves_cache(self, make_router, manager, network):
        router = make_router(tile_strategy=TileStrategyProfile.NETWORK_FIRST)
        tiles = await manager.open(PartitionKind.TILE)
        await tiles.put(RequestKey.for_url(TILE_URL), StoredResponse(200, body=b'cached'))
        network.fail(TILE_URL)

        response = await router.handle(CacheRequest(TILE_URL))
        assert response.body == b'cached'


class TestBulkData:
    """Stale-while-revalidate for geodata files."""

    @pytest.mark.asyncio
    async def test_cached_returned_without_waiting_for_network(self, make_router, manager, network):
        router = make_router()
        data = await manager.open(PartitionKind.DATA)
        await data.put(RequestKey.for_url(DATA_URL), StoredResponse(200, body=b'{"old": 1}'))
        network.add(DATA_URL, body=b'{"new": 1}', delay=10)

        response = await asyncio.wait_for(router.handle(CacheRequest(DATA_URL)), 1.0)

        assert response.body == b'{"old": 1}'
        await router.writer.close()

    @pytest.mark.asyncio
    async def test_background_refresh_updates_cache(self, make_router, manager, network):
        router = make_router()
        data = await manager.open(PartitionKind.DATA)
        await data.put(RequestKey.for_url(DATA_URL), StoredResponse(200, body=b'v1'))
        network.add(DATA_URL, body=b'v2')

        response = await router.handle(CacheRequest(DATA_URL))
        await router.writer.drain()

        assert response.body == b'v1'
        assert (await data.get(RequestKey.for_url(DATA_URL))).body == b'v2'

    @pytest.mark.asyncio
    async def test_background_refresh_failure_is_quiet(self, make_router, manager, network):
        router = make_router()
        data = await manager.open(PartitionKind.DATA)
        await data.put(RequestKey.for_url(DATA_URL), StoredResponse(200, body=b'v1'))
        network.offline = True

        response = await router.handle(CacheRequest(DATA_URL))
        await router.writer.drain()

        assert response.body == b'v1'
        assert router.writer.stats['failed'] == 0

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, make_router, manager, network):
        router = make_router()
        network.add(DATA_URL, body=b'geo')

        response = await router.handle(CacheRequest(DATA_URL))

        assert response.body == b'geo'
        assert (await _cached(manager, PartitionKind.DATA, DATA_URL)).body == b'geo'

    @pytest.mark.asyncio
    async def test_miss_error_status_returned_not_stored(self, make_router, manager, network):
        router = make_router()
        network.add(DATA_URL, status=500)

        response = await router.handle(CacheRequest(DATA_URL))

        assert response.status == 500
        assert await _cached(manager, PartitionKind.DATA, DATA_URL) is None

    @pytest.mark.asyncio
    async def test_miss_offline_raises(self, make_router, network):
        router = make_router()
        network.offline = True
        with pytest.raises(NetworkError):
            await router.handle(CacheRequest(DATA_URL))


class TestIdentity:
    """Network-first for the identity provider."""

    @pytest.mark.asyncio
    async def test_get_cached_for_offline_use(self, make_router, manager, network):
        router = make_router()
        network.add(AUTH_URL, body=b'[{"id": 1}]')

        await router.handle(CacheRequest(AUTH_URL))
        await router.writer.drain()
        network.offline = True
        response = await router.handle(CacheRequest(AUTH_URL))

        assert response.body == b'[{"id": 1}]'
        assert router.stats['fallbacks'] == 1

    @pytest.mark.asyncio
    async def test_post_failure_propagates(self, make_router, network):
        router = make_router()
        network.fail(AUTH_URL, method='POST')

        with pytest.raises(NetworkError):
            await router.handle(CacheRequest(AUTH_URL, method='POST', body=b'{}'))

    @pytest.mark.asyncio
    async def test_post_not_cached(self, make_router, manager, network):
        router = make_router()
        network.add(AUTH_URL, method='POST', body=b'created')

        response = await router.handle(CacheRequest(AUTH_URL, method='POST'))
        await router.writer.drain()

        assert response.body == b'created'
        data = await manager.open(PartitionKind.DATA)
        assert await data.count() == 0

    @pytest.mark.asyncio
    async def test_error_status_not_cached(self, make_router, manager, network):
        router = make_router()
        network.add(AUTH_URL, status=401)

        response = await router.handle(CacheRequest(AUTH_URL))
        await router.writer.drain()

        assert response.status == 401
        assert await _cached(manager, PartitionKind.DATA, AUTH_URL) is None


class TestShellAndOther:
    """Cache-first default strategy with offline navigation fallback."""

    @pytest.mark.asyncio
    async def test_cache_first(self, make_router, manager, network):
        router = make_router()
        shell = await manager.open(PartitionKind.SHELL)
        await shell.put(RequestKey.for_url('http://localhost:3000/manifest.json'), StoredResponse(200, body=b'{}'))

        response = await router.handle(CacheRequest('/manifest.json'))

        assert response.body == b'{}'
        assert network.calls == []

    @pytest.mark.asyncio
    async def test_miss_is_stored(self, make_router, manager, network):
        router = make_router()
        network.add('/api/weather', body=b'sunny')

        await router.handle(CacheRequest('/api/weather'))

        cached = await _cached(manager, PartitionKind.SHELL, 'http://localhost:3000/api/weather')
        assert cached.body == b'sunny'

    @pytest.mark.asyncio
    async def test_offline_navigation_gets_root(self, make_router, manager, network):
        router = make_router()
        shell = await manager.open(PartitionKind.SHELL)
        await shell.put(RequestKey.for_url('http://localhost:3000/'), StoredResponse(200, body=b'<html>'))
        network.offline = True

        response = await router.handle(CacheRequest('/fields/42', mode='navigate'))
        assert response.body == b'<html>'

    @pytest.mark.asyncio
    async def test_offline_non_navigation_raises(self, make_router, manager, network):
        router = make_router()
        shell = await manager.open(PartitionKind.SHELL)
        await shell.put(RequestKey.for_url('http://localhost:3000/'), StoredResponse(200, body=b'<html>'))
        network.offline = True

        with pytest.raises(NetworkError):
            await router.handle(CacheRequest('/api/weather'))

    @pytest.mark.asyncio
    async def test_non_get_passes_through(self, make_router, manager, network):
        router = make_router()
        network.add('/api/notes', method='POST', body=b'ok')

        response = await router.handle(CacheRequest('/api/notes', method='POST'))

        assert response.body == b'ok'
        assert await manager.partition_names() == []


class TestDegradedStorage:
    """Storage failures degrade to cache misses and skipped writes."""

    @pytest.mark.asyncio
    async def test_tile_served_from_network(self, versions, network, never_maintain_policy):
        manager = CacheManager(BrokenStorage(), versions)
        router = FetchRouter(manager, network, policy=never_maintain_policy)
        network.add(TILE_URL, body=b'net')

        response = await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()

        assert response.body == b'net'
        assert router.stats['storage_errors'] == 2
        assert router.writer.stats['failed'] == 0

    @pytest.mark.asyncio
    async def test_offline_tile_placeholder(self, versions, network, never_maintain_policy):
        manager = CacheManager(BrokenStorage(), versions)
        router = FetchRouter(manager, network, policy=never_maintain_policy)
        network.offline = True

        response = await router.handle(CacheRequest(TILE_URL))
        assert response.body == TRANSPARENT_PNG

    @pytest.mark.asyncio
    async def test_shell_write_failure_returns_response(self, versions, network, never_maintain_policy):
        manager = CacheManager(BrokenStorage(), versions)
        router = FetchRouter(manager, network, policy=never_maintain_policy)
        network.add('/manifest.json', body=b'{}')

        response = await router.handle(CacheRequest('/manifest.json'))
        assert response.body == b'{}'


class TestRouterMisc:
    @pytest.mark.asyncio
    async def test_stats_counters(self, make_router, network):
        router = make_router()
        network.add(TILE_URL, body=b'x')

        await router.handle(CacheRequest(TILE_URL))
        await router.writer.drain()
        await router.handle(CacheRequest(TILE_URL))

        stats = router.stats
        assert stats['downloads'] == 1
        assert stats['cache_misses'] == 1
        assert stats['cache_hits'] == 1

    def test_from_settings(self, manager, network):
        settings = CacheSettings(tile_strategy='network_first', tile_network_timeout_s=2.5)
        router = FetchRouter.from_settings(settings, manager, network)
        assert router.tile_strategy is TileStrategyProfile.NETWORK_FIRST
        assert router.tile_timeout_s == 2.5
        assert router.policy.max_entries == settings.tile_max_entries
