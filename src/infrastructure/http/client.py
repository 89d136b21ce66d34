from __future__ import annotations

import logging
import os
import ssl
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import aiohttp
import certifi

from domain.models import StoredResponse
from shared.constants import APP_NAME, HTTP_TIMEOUT_DEFAULT
from shared.errors import NetworkError

if TYPE_CHECKING:
    from domain.models import CacheRequest

logger = logging.getLogger(__name__)


class Network(Protocol):
    """Anything able to perform a request and return a response snapshot."""

    async def fetch(self, request: CacheRequest) -> StoredResponse: ...


def resolve_cache_dir(storage_dir: str | None = None) -> Path:
    """Directory for the persistent cache storage."""
    if storage_dir:
        return Path(storage_dir).expanduser().resolve()
    local = os.getenv('LOCALAPPDATA')
    if local:
        return (Path(local) / APP_NAME / '.cache').resolve()
    # Fallback: user's home directory
    return (Path.home() / '.aerafield' / 'cache').resolve()


def make_http_session() -> aiohttp.ClientSession:
    # SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    return aiohttp.ClientSession(connector=connector)


class AiohttpNetwork:
    """Network access through an aiohttp session.

    Connection errors and timeouts become NetworkError. Any HTTP status,
    including 4xx/5xx, is returned as a response.
    """

    def __init__(self, session: aiohttp.ClientSession, *, timeout: float = HTTP_TIMEOUT_DEFAULT) -> None:
        self.session = session
        self.timeout = timeout

    async def fetch(self, request: CacheRequest) -> StoredResponse:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with self.session.request(
                request.method,
                request.url,
                headers=list(request.headers),
                data=request.body,
                timeout=timeout,
            ) as resp:
                body = await resp.read()
                return StoredResponse(
                    status=resp.status,
                    status_text=resp.reason or '',
                    headers=tuple((str(k), str(v)) for k, v in resp.headers.items()),
                    body=body,
                )
        except (TimeoutError, aiohttp.ClientError) as exc:
            msg = f'Network request failed: {request.method} {request.url}: {exc!r}'
            raise NetworkError(msg, url=request.url) from exc

    async def close(self) -> None:
        await self.session.close()


class OfflineNetwork:
    """Network stand-in for forced offline mode: every fetch fails."""

    async def fetch(self, request: CacheRequest) -> StoredResponse:
        msg = f'Offline mode: {request.method} {request.url} not sent'
        raise NetworkError(msg, url=request.url)

    async def close(self) -> None:
        return None
