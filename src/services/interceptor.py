"""Host-facing facade of the offline cache layer.

A host harness (browser-like runtime, test, CLI) calls these methods in
place of install/activate/fetch/message events.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from infrastructure.http.client import (
    AiohttpNetwork,
    OfflineNetwork,
    make_http_session,
    resolve_cache_dir,
)
from routing.router import FetchRouter
from services.control_channel import ControlChannel
from services.lifecycle import LifecycleManager
from shared.constants import StorageBackend
from storage.backends import MemoryStorage, SQLiteStorage
from storage.manager import CacheManager
from storage.writer import CacheWriter

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from domain.models import CacheRequest, CacheSettings, StoredResponse
    from infrastructure.http.client import Network
    from services.lifecycle import InstallReport
    from shared.constants import ControlMessageType
    from storage.backends import CacheStorage
    from tiles.policy import TileCachePolicy

logger = logging.getLogger(__name__)


class RequestInterceptor:
    """Wires the cache manager, router, lifecycle and control channel.

    Usage:
        async with create_interceptor(settings) as interceptor:
            await interceptor.install()
            await interceptor.activate()
            response = await interceptor.handle_fetch(CacheRequest(url))
    """

    def __init__(
        self,
        manager: CacheManager,
        router: FetchRouter,
        lifecycle: LifecycleManager,
        control: ControlChannel,
    ) -> None:
        self.manager = manager
        self.router = router
        self.lifecycle = lifecycle
        self.control = control

    @property
    def writer(self) -> CacheWriter:
        return self.router.writer

    async def install(self) -> InstallReport:
        return await self.lifecycle.install()

    async def activate(self) -> list[str]:
        return await self.lifecycle.activate()

    async def handle_fetch(self, request: CacheRequest) -> StoredResponse:
        return await self.router.handle(request)

    async def handle_message(self, message: Mapping[str, Any], reply: Callable[[dict], Any]) -> dict:
        return await self.control.handle_message(message, reply)

    async def request(self, message_type: ControlMessageType | str) -> dict:
        return await self.control.request(message_type)

    async def close(self, *, drain_timeout: float | None = 5.0) -> None:
        """Let pending writes finish, then release storage and network."""
        await self.writer.drain(timeout=drain_timeout)
        await self.writer.close()
        close_network = getattr(self.router.network, 'close', None)
        if close_network is not None:
            await close_network()
        self.manager.storage.close()

    async def __aenter__(self) -> RequestInterceptor:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_storage(settings: CacheSettings) -> CacheStorage:
    if settings.storage_backend is StorageBackend.MEMORY:
        return MemoryStorage()
    return SQLiteStorage(resolve_cache_dir(settings.storage_dir))


def create_network(settings: CacheSettings) -> Network:
    """Network for ``settings``. Must be called with a running event loop."""
    if settings.offline:
        return OfflineNetwork()
    return AiohttpNetwork(make_http_session(), timeout=settings.request_timeout_s)


def create_interceptor(
    settings: CacheSettings,
    network: Network | None = None,
    *,
    storage: CacheStorage | None = None,
    policy: TileCachePolicy | None = None,
    claim_clients: Callable[[], Any] | None = None,
    has_controller: bool = False,
) -> RequestInterceptor:
    """Build a RequestInterceptor from settings.

    Args:
        settings: Cache settings.
        network: Network to use. Defaults to aiohttp (or offline stub).
        storage: Storage backend. Defaults to the one named in settings.
        policy: Tile policy override (tests inject a deterministic one).
        claim_clients: Host hook called on activate.
        has_controller: Whether a previous release controls clients.
    """
    manager = CacheManager(storage or create_storage(settings), settings.versions)
    network = network or create_network(settings)
    router = FetchRouter.from_settings(settings, manager, network, policy=policy)
    lifecycle = LifecycleManager(
        manager,
        network,
        static_assets=settings.static_assets,
        origin=settings.app_origin,
        claim_clients=claim_clients,
        has_controller=has_controller,
    )
    control = ControlChannel(manager)
    logger.info(
        'Offline cache ready: versions=%s tile_policy=%s tile_strategy=%s',
        sorted(settings.versions.as_set()),
        settings.tile_policy.value,
        settings.tile_strategy.value,
    )
    return RequestInterceptor(manager, router, lifecycle, control)
