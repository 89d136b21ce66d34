"""Domain layer - request/response snapshots and settings."""
from domain.models import (
    CacheRequest,
    CacheSettings,
    CacheVersions,
    RequestKey,
    StoredResponse,
    normalize_url,
)

__all__ = [
    'CacheRequest',
    'CacheSettings',
    'CacheVersions',
    'RequestKey',
    'StoredResponse',
    'normalize_url',
]
