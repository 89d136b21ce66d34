"""Request classification into traffic classes.

Checks run in a fixed order and the first match wins:
tile → bulk-data → identity → shell → other.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from domain.models import normalize_url
from shared.constants import (
    APP_ORIGIN,
    DATA_URL_PATTERNS,
    IDENTITY_HOST,
    STATIC_ASSETS,
    TILE_URL_PATTERNS,
    TrafficClass,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from domain.models import CacheSettings


@dataclass(frozen=True)
class ClassifierRules:
    """Compiled matching rules for classify()."""

    tile_patterns: tuple[re.Pattern[str], ...]
    data_patterns: tuple[re.Pattern[str], ...]
    identity_host: str
    shell_urls: frozenset[str]

    @classmethod
    def build(
        cls,
        *,
        tile_patterns: Iterable[str] = TILE_URL_PATTERNS,
        data_patterns: Iterable[str] = DATA_URL_PATTERNS,
        identity_host: str = IDENTITY_HOST,
        static_assets: Iterable[str] = STATIC_ASSETS,
        origin: str = APP_ORIGIN,
    ) -> ClassifierRules:
        return cls(
            tile_patterns=tuple(re.compile(p) for p in tile_patterns),
            data_patterns=tuple(re.compile(p) for p in data_patterns),
            identity_host=identity_host.lower().lstrip('.'),
            shell_urls=frozenset(normalize_url(path, origin) for path in static_assets),
        )

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> ClassifierRules:
        return cls.build(
            tile_patterns=settings.tile_url_patterns,
            data_patterns=settings.data_url_patterns if settings.data_caching_enabled else (),
            identity_host=settings.identity_host,
            static_assets=settings.static_assets,
            origin=settings.app_origin,
        )


DEFAULT_RULES = ClassifierRules.build()


def is_tile_url(url: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    return any(p.search(url) for p in rules.tile_patterns)


def is_data_url(url: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    return any(p.search(url) for p in rules.data_patterns)


def is_identity_url(url: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    try:
        host = (urlsplit(url).hostname or '').lower()
    except ValueError:
        return False
    wanted = rules.identity_host
    return bool(wanted) and (host == wanted or host.endswith('.' + wanted))


def is_shell_url(url: str, rules: ClassifierRules = DEFAULT_RULES) -> bool:
    try:
        return normalize_url(url) in rules.shell_urls
    except ValueError:
        return False


def classify(
    url: str,
    method: str = 'GET',
    *,
    navigate: bool = False,
    rules: ClassifierRules = DEFAULT_RULES,
) -> TrafficClass:
    """Return the traffic class of a request. Never raises.

    Only GET requests can be shell requests; anything else that matches
    no earlier class is ``other``.
    """
    if is_tile_url(url, rules):
        return TrafficClass.TILE
    if is_data_url(url, rules):
        return TrafficClass.BULK_DATA
    if is_identity_url(url, rules):
        return TrafficClass.IDENTITY
    if method.upper() == 'GET' and (navigate or is_shell_url(url, rules)):
        return TrafficClass.SHELL
    return TrafficClass.OTHER
