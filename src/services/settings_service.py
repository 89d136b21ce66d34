from __future__ import annotations

import logging
import os
from pathlib import Path

import tomlkit

from domain.models import CacheSettings
from domain.toml_sections import flat_to_sectioned, sectioned_to_flat
from shared.constants import APP_NAME

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = 'offline_cache.toml'


def default_settings_path() -> Path:
    """
    Determine settings file location.

    1) <project_root>/configs/offline_cache.toml if it exists (run-from-repo setups).
    2) Otherwise %APPDATA%/AeraField/configs/offline_cache.toml
       or ~/AppData/Roaming/AeraField/configs/offline_cache.toml when APPDATA is not set.
    """
    project_root = Path(__file__).resolve().parent.parent.parent
    local = project_root / 'configs' / SETTINGS_FILENAME
    if local.exists():
        return local
    return (
        Path(os.getenv('APPDATA') or (Path.home() / 'AppData' / 'Roaming'))
        / APP_NAME
        / 'configs'
        / SETTINGS_FILENAME
    )


def load_settings(path: str | Path | None = None) -> CacheSettings:
    """Load sectioned TOML settings; a missing file yields defaults."""
    settings_path = Path(path) if path is not None else default_settings_path()
    if not settings_path.exists():
        logger.info('Settings file %s not found, using defaults', settings_path)
        return CacheSettings()
    text = settings_path.read_text(encoding='utf-8')
    data = tomlkit.parse(text).unwrap()
    settings = CacheSettings.model_validate(sectioned_to_flat(data))
    logger.info(
        'Loaded settings from %s: version=%s tile_policy=%s tile_strategy=%s',
        settings_path,
        settings.cache_version,
        settings.tile_policy.value,
        settings.tile_strategy.value,
    )
    return settings


def save_settings(settings: CacheSettings, path: str | Path | None = None) -> Path:
    """Write settings as sectioned TOML."""
    settings_path = Path(path) if path is not None else default_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    sectioned = flat_to_sectioned(settings.model_dump(mode='json'))
    settings_path.write_text(tomlkit.dumps(sectioned), encoding='utf-8')
    return settings_path
