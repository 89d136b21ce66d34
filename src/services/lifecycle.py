"""Install/activate lifecycle of the offline cache layer.

States: new → installing → installed → activating → active.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from domain.models import CacheRequest, RequestKey
from shared.constants import APP_ORIGIN, STATIC_ASSETS, PartitionKind
from shared.errors import NetworkError, StorageError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from infrastructure.http.client import Network
    from storage.manager import CacheManager, Partition

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    NEW = 'new'
    INSTALLING = 'installing'
    INSTALLED = 'installed'
    ACTIVATING = 'activating'
    ACTIVE = 'active'


@dataclass
class InstallReport:
    """Result of pre-warming the shell partition."""

    cached: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skip_waiting: bool = False
    update_available: bool = False


class LifecycleManager:
    """Drives install and activate for one release of the cache layer.

    Usage:
        lifecycle = LifecycleManager(manager, network)
        await lifecycle.install()
        await lifecycle.activate()
    """

    def __init__(
        self,
        manager: CacheManager,
        network: Network,
        *,
        static_assets: Iterable[str] = STATIC_ASSETS,
        origin: str = APP_ORIGIN,
        claim_clients: Callable[[], Any] | None = None,
        has_controller: bool = False,
    ) -> None:
        """Initialize lifecycle manager.

        Args:
            manager: Cache manager of the current release.
            network: Network used to pre-warm the shell partition.
            static_assets: Paths of the application shell.
            origin: Origin that relative asset paths resolve against.
            claim_clients: Host hook taking control of open clients on activate.
            has_controller: Whether a previous release currently controls clients.
        """
        self.manager = manager
        self.network = network
        self.static_assets = list(static_assets)
        self.origin = origin
        self.claim_clients = claim_clients
        self.has_controller = has_controller
        self.skip_waiting = False
        self._state = LifecycleState.NEW
        self._listeners: list[Callable[[LifecycleState], Any]] = []

    @property
    def state(self) -> LifecycleState:
        return self._state

    def add_listener(self, listener: Callable[[LifecycleState], Any]) -> None:
        """Register a callback invoked with every new state."""
        self._listeners.append(listener)

    def _set_state(self, state: LifecycleState) -> None:
        self._state = state
        logger.info('Lifecycle state: %s', state.value)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception('Lifecycle listener failed')

    async def install(self) -> InstallReport:
        """Pre-warm the shell partition with the static asset manifest.

        Each asset is cached independently; failures are logged and the
        rest continue.
        """
        if self._state is not LifecycleState.NEW:
            msg = f'Cannot install from state {self._state.value}'
            raise RuntimeError(msg)
        self._set_state(LifecycleState.INSTALLING)
        report = InstallReport()

        # Absolute URLs are not part of the shell manifest
        paths = [p for p in self.static_assets if not p.startswith('http')]
        try:
            shell = await self.manager.open(PartitionKind.SHELL)
        except StorageError as exc:
            logger.warning('Shell cache unavailable, skipping pre-warm: %s', exc)
            report.failed = dict.fromkeys(paths, str(exc))
        else:
            logger.info('Caching static assets')
            results = await asyncio.gather(*(self._cache_asset(shell, path) for path in paths))
            for path, error in zip(paths, results):
                if error is None:
                    report.cached.append(path)
                else:
                    report.failed[path] = error

        self.skip_waiting = True
        report.skip_waiting = True
        report.update_available = self.has_controller
        self._set_state(LifecycleState.INSTALLED)
        if report.update_available:
            logger.info('New version available')
        return report

    async def _cache_asset(self, shell: Partition, path: str) -> str | None:
        request = CacheRequest(path).resolve(self.origin)
        try:
            response = await self.network.fetch(request)
            if not response.ok:
                return f'HTTP {response.status}'
            await shell.put(RequestKey.for_request(request), response)
        except (NetworkError, StorageError) as exc:
            logger.warning('Failed to cache %s: %s', path, exc)
            return str(exc)
        logger.info('Cached: %s', path)
        return None

    async def activate(self) -> list[str]:
        """Remove partitions of previous releases, then claim open clients.

        Returns:
            Names of the partitions removed by the sweep.
        """
        if self._state is not LifecycleState.INSTALLED:
            msg = f'Cannot activate from state {self._state.value}'
            raise RuntimeError(msg)
        self._set_state(LifecycleState.ACTIVATING)
        try:
            removed = await self.manager.sweep(self.manager.versions.as_set())
        except StorageError as exc:
            logger.warning('Old cache sweep failed: %s', exc)
            removed = []

        if self.claim_clients is not None:
            try:
                result = self.claim_clients()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception('Failed to claim clients')
        self.has_controller = True
        self._set_state(LifecycleState.ACTIVE)
        return removed
