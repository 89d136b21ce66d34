"""Pytest configuration and fixtures for offline cache tests."""

import asyncio
import random
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from domain.models import CacheVersions, StoredResponse, normalize_url  # noqa: E402
from shared.errors import NetworkError  # noqa: E402
from storage.backends import MemoryStorage  # noqa: E402
from storage.manager import CacheManager  # noqa: E402
from tiles.policy import TileCachePolicy  # noqa: E402

ORIGIN = 'http://localhost:3000'


@dataclass
class FakeRoute:
    response: StoredResponse | None = None
    error: Exception | None = None
    delay: float = 0.0


class FakeNetwork:
    """In-memory network: canned responses per (method, url)."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], FakeRoute] = {}
        self.calls: list = []
        self.offline = False

    def add(
        self,
        url: str,
        *,
        body: bytes = b'',
        status: int = 200,
        method: str = 'GET',
        headers: tuple = (),
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> StoredResponse:
        response = StoredResponse(
            status=status,
            status_text='OK' if status == 200 else 'Error',
            headers=headers,
            body=body,
        )
        key = (method.upper(), normalize_url(url, ORIGIN))
        self.routes[key] = FakeRoute(response=response, error=error, delay=delay)
        return response

    def fail(self, url: str, *, method: str = 'GET') -> None:
        self.add(url, method=method, error=NetworkError('connection refused', url=url))

    async def fetch(self, request):
        self.calls.append(request)
        if self.offline:
            msg = f'offline: {request.url}'
            raise NetworkError(msg, url=request.url)
        route = self.routes.get((request.method, request.url))
        if route is None:
            return StoredResponse(status=404, status_text='Not Found')
        if route.delay:
            await asyncio.sleep(route.delay)
        if route.error is not None:
            raise route.error
        return route.response

    def calls_to(self, url: str) -> int:
        wanted = normalize_url(url, ORIGIN)
        return sum(1 for r in self.calls if r.url == wanted)


@pytest.fixture
def versions():
    return CacheVersions.from_release('aerafield', 'v2')


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def manager(storage, versions):
    return CacheManager(storage, versions)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def always_maintain_policy():
    """Count-and-age policy that runs maintenance after every write."""
    return TileCachePolicy(maintenance_rate=1.0, rng=random.Random(0))


@pytest.fixture
def never_maintain_policy():
    return TileCachePolicy(maintenance_rate=0.0, rng=random.Random(0))
