from __future__ import annotations

from dataclasses import dataclass, replace
from urllib.parse import urljoin, urlsplit, urlunsplit

from pydantic import BaseModel, field_validator

from shared.constants import (
    APP_ORIGIN,
    CACHE_PREFIX,
    CACHE_VERSION,
    DATA_URL_PATTERNS,
    HTTP_MULTIPLE_CHOICES,
    HTTP_OK,
    HTTP_TIMEOUT_DEFAULT,
    IDENTITY_HOST,
    STATIC_ASSETS,
    TILE_CACHE_EVICT_FRACTION,
    TILE_CACHE_MAX_AGE_DAYS,
    TILE_CACHE_MAX_ENTRIES,
    TILE_MAINTENANCE_RATE,
    TILE_NETWORK_TIMEOUT_S,
    TILE_URL_PATTERNS,
    PartitionKind,
    StorageBackend,
    TilePolicyProfile,
    TileStrategyProfile,
    default_tile_policy,
    default_tile_strategy,
)

_DEFAULT_PORTS = {'http': 80, 'https': 443}

Headers = tuple[tuple[str, str], ...]


def normalize_url(url: str, base: str | None = None) -> str:
    """Return the absolute, normalized form of ``url``.

    Relative URLs are resolved against ``base``. Scheme and host are
    lower-cased, default ports and fragments are dropped.

    Raises:
        ValueError: If the URL cannot be made absolute.
    """
    raw = urljoin(base, url) if base else url
    parts = urlsplit(raw)
    if not parts.scheme or not parts.netloc:
        msg = f'Cannot build absolute URL from {url!r}'
        raise ValueError(msg)
    scheme = parts.scheme.lower()
    host = (parts.hostname or '').lower()
    if ':' in host:
        host = f'[{host}]'
    netloc = host
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f'{netloc}:{port}'
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f'{userinfo}:{parts.password}'
        netloc = f'{userinfo}@{netloc}'
    return urlunsplit((scheme, netloc, parts.path or '/', parts.query, ''))


@dataclass(frozen=True)
class CacheRequest:
    """An intercepted outgoing request."""

    url: str
    method: str = 'GET'
    mode: str = 'cors'
    headers: Headers = ()
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'method', self.method.upper())

    @property
    def is_navigation(self) -> bool:
        return self.mode == 'navigate'

    @property
    def is_get(self) -> bool:
        return self.method == 'GET'

    def resolve(self, origin: str) -> CacheRequest:
        """Copy of the request with an absolute, normalized URL."""
        return replace(self, url=normalize_url(self.url, origin))


@dataclass(frozen=True, order=True)
class RequestKey:
    """Effective cache key: method plus normalized absolute URL."""

    method: str
    url: str

    @classmethod
    def for_request(cls, request: CacheRequest) -> RequestKey:
        return cls(method=request.method, url=normalize_url(request.url))

    @classmethod
    def for_url(cls, url: str, origin: str | None = None) -> RequestKey:
        return cls(method='GET', url=normalize_url(url, origin))


@dataclass(frozen=True)
class StoredResponse:
    """Immutable snapshot of a network response."""

    status: int
    status_text: str = ''
    headers: Headers = ()
    body: bytes = b''

    @property
    def ok(self) -> bool:
        return HTTP_OK <= self.status < HTTP_MULTIPLE_CHOICES

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup (first value wins)."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    def with_header(self, name: str, value: str) -> StoredResponse:
        """Return a copy with ``name`` set to ``value`` (replacing old values)."""
        wanted = name.lower()
        headers = tuple((k, v) for k, v in self.headers if k.lower() != wanted)
        return replace(self, headers=(*headers, (name, value)))


@dataclass(frozen=True)
class CacheVersions:
    """Partition names of the current release."""

    shell: str
    data: str
    tile: str

    @classmethod
    def from_release(cls, prefix: str, version: str) -> CacheVersions:
        return cls(
            shell=f'{prefix}-{version}',
            data=f'{prefix}-data-{version}',
            tile=f'{prefix}-tiles-{version}',
        )

    def name_for(self, kind: PartitionKind) -> str:
        return getattr(self, PartitionKind(kind).value)

    def as_set(self) -> set[str]:
        return {self.shell, self.data, self.tile}


class CacheSettings(BaseModel):
    """
    Настройки офлайн-кэша, собранные в одну плоскую модель.

    В TOML хранятся по секциям (см. domain.toml_sections).
    """

    model_config = {
        'extra': 'ignore',
    }

    # Origin приложения и версия разделов
    app_origin: str = APP_ORIGIN
    cache_prefix: str = CACHE_PREFIX
    cache_version: str = CACHE_VERSION

    # Хранилище
    storage_backend: StorageBackend = StorageBackend.SQLITE
    # Каталог SQLite файла (None: каталог пользователя)
    storage_dir: str | None = None

    # Тайлы
    tile_policy: TilePolicyProfile = default_tile_policy()
    tile_strategy: TileStrategyProfile = default_tile_strategy()
    tile_max_entries: int = TILE_CACHE_MAX_ENTRIES
    tile_evict_fraction: float = TILE_CACHE_EVICT_FRACTION
    tile_max_age_days: float = TILE_CACHE_MAX_AGE_DAYS
    tile_maintenance_rate: float = TILE_MAINTENANCE_RATE
    tile_network_timeout_s: float = TILE_NETWORK_TIMEOUT_S
    tile_url_patterns: list[str] = list(TILE_URL_PATTERNS)

    # Геоданные (bulk-data); при выключении такие запросы идут как «прочие»
    data_caching_enabled: bool = True
    data_url_patterns: list[str] = list(DATA_URL_PATTERNS)

    # Аутентификация
    identity_host: str = IDENTITY_HOST

    # Оболочка приложения
    static_assets: list[str] = list(STATIC_ASSETS)

    # Сеть
    request_timeout_s: float = HTTP_TIMEOUT_DEFAULT
    offline: bool = False

    @field_validator('tile_evict_fraction', 'tile_maintenance_rate')
    @classmethod
    def validate_fraction_fields(cls, v: float | str) -> float:
        v = float(v)
        if not (0.0 <= v <= 1.0):
            msg = 'Value must be within [0.0, 1.0]'
            raise ValueError(msg)
        return v

    @field_validator('tile_max_entries')
    @classmethod
    def validate_max_entries(cls, v: int) -> int:
        if v < 1:
            msg = 'tile_max_entries must be positive'
            raise ValueError(msg)
        return v

    @field_validator('tile_network_timeout_s', 'request_timeout_s', 'tile_max_age_days')
    @classmethod
    def validate_positive(cls, v: float | str) -> float:
        v = float(v)
        if v <= 0:
            msg = 'Value must be greater than zero'
            raise ValueError(msg)
        return v

    @field_validator('app_origin')
    @classmethod
    def validate_origin(cls, v: str) -> str:
        # Проверяем, что origin абсолютный
        return normalize_url(v).rstrip('/')

    @property
    def versions(self) -> CacheVersions:
        return CacheVersions.from_release(self.cache_prefix, self.cache_version)

    @property
    def expiry_enabled(self) -> bool:
        return self.tile_policy == TilePolicyProfile.BOUNDED_AGE
