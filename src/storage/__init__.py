"""Versioned cache partitions and their storage backends.

This module provides:
- CacheStorage: async backend interface
- MemoryStorage / SQLiteStorage: backend implementations
- CacheManager: owner of the current shell, data and tile partitions
- Partition: handle with get/put/delete/keys
"""

from storage.backends import CacheStorage, MemoryStorage, SQLiteStorage
from storage.manager import CacheManager, Partition

__all__ = [
    'CacheManager',
    'CacheStorage',
    'MemoryStorage',
    'Partition',
    'SQLiteStorage',
]
