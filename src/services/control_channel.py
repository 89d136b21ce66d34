"""Administrative message channel for cache inspection and invalidation.

Every message gets exactly one reply:
- CLEAR_ALL_CACHES  → {success, message}
- CLEAR_TILES_CACHE → {success, message}
- GET_CACHE_INFO    → {success, cacheInfo: {name: {entryCount, urls}}}
Failures are reported as {success: False, message}.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from shared.constants import CACHE_INFO_SAMPLE_SIZE, ControlMessageType

if TYPE_CHECKING:
    from collections.abc import Callable

    from storage.manager import CacheManager

logger = logging.getLogger(__name__)


class ControlChannel:
    def __init__(self, manager: CacheManager, *, sample_size: int = CACHE_INFO_SAMPLE_SIZE) -> None:
        self.manager = manager
        self.sample_size = sample_size

    async def handle_message(self, message: Mapping[str, Any] | Any, reply: Callable[[dict], Any]) -> dict:
        """Run the operation named by ``message['type']`` and answer once.

        Anything that is not a mapping is answered as an unknown type.
        """
        raw_type = message.get('type') if isinstance(message, Mapping) else None
        try:
            payload = await self._dispatch(raw_type)
        except Exception as exc:
            logger.exception('Control message %r failed', raw_type)
            payload = {'success': False, 'message': str(exc) or type(exc).__name__}
        try:
            result = reply(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception('Failed to deliver control reply')
        return payload

    async def request(self, message_type: ControlMessageType | str, **fields: Any) -> dict:
        """Send a message and wait for its reply."""
        future: asyncio.Future[dict] = asyncio.get_running_loop().create_future()

        def _reply(payload: dict) -> None:
            if not future.done():
                future.set_result(payload)

        message = {'type': ControlMessageType(message_type).value, **fields}
        await self.handle_message(message, _reply)
        return await future

    async def _dispatch(self, raw_type: Any) -> dict:
        try:
            message_type = ControlMessageType(raw_type)
        except ValueError:
            return {'success': False, 'message': f'Unknown message type: {raw_type}'}

        if message_type is ControlMessageType.CLEAR_ALL_CACHES:
            names = await self.manager.delete_all()
            return {'success': True, 'message': f'Cleared {len(names)} caches'}
        if message_type is ControlMessageType.CLEAR_TILES_CACHE:
            await self.manager.delete_partition(self.manager.versions.tile)
            return {'success': True, 'message': 'Tile cache cleared'}
        return {'success': True, 'cacheInfo': await self.cache_info()}

    async def cache_info(self) -> dict[str, dict[str, Any]]:
        info: dict[str, dict[str, Any]] = {}
        for name in await self.manager.partition_names():
            keys = await self.manager.partition(name).keys()
            info[name] = {
                'entryCount': len(keys),
                'urls': [key.url for key in keys[: self.sample_size]],
            }
        return info
