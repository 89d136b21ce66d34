"""HTTP client infrastructure."""
from infrastructure.http.client import (
    AiohttpNetwork,
    Network,
    OfflineNetwork,
    make_http_session,
    resolve_cache_dir,
)

__all__ = [
    'AiohttpNetwork',
    'Network',
    'OfflineNetwork',
    'make_http_session',
    'resolve_cache_dir',
]
