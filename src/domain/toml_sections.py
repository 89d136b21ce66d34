"""Mapping layer between flat CacheSettings fields and sectioned TOML format.

CacheSettings remains a flat Pydantic model. This module provides two functions:
- flat_to_sectioned(): flat dict → sectioned dict (for TOML save)
- sectioned_to_flat(): sectioned dict → flat dict (for TOML load)
"""

from __future__ import annotations

# {section_name: {flat_field_name: short_name_in_toml}}
SECTION_MAP: dict[str, dict[str, str]] = {
    'storage': {
        'storage_backend': 'backend',
        'storage_dir': 'dir',
    },
    'tiles': {
        'tile_policy': 'policy',
        'tile_strategy': 'strategy',
        'tile_max_entries': 'max_entries',
        'tile_evict_fraction': 'evict_fraction',
        'tile_max_age_days': 'max_age_days',
        'tile_maintenance_rate': 'maintenance_rate',
        'tile_network_timeout_s': 'network_timeout_s',
        'tile_url_patterns': 'url_patterns',
    },
    'data': {
        'data_caching_enabled': 'enabled',
        'data_url_patterns': 'url_patterns',
    },
    'identity': {
        'identity_host': 'host',
    },
    'shell': {
        'static_assets': 'static_assets',
    },
    'network': {
        'request_timeout_s': 'timeout_s',
        'offline': 'offline',
    },
}

# Reverse index: flat_field → (section, short_name)
_FLAT_TO_SECTION: dict[str, tuple[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    for _flat, _short in _fields.items():
        _FLAT_TO_SECTION[_flat] = (_section, _short)

# Reverse index: (section, short_name) → flat_field
_SECTION_TO_FLAT: dict[str, dict[str, str]] = {}
for _section, _fields in SECTION_MAP.items():
    _SECTION_TO_FLAT[_section] = {v: k for k, v in _fields.items()}


def flat_to_sectioned(flat: dict) -> dict:
    """Convert flat CacheSettings dict to sectioned dict for TOML output.

    TOML has no null, so keys whose value is None are omitted.
    """
    result: dict = {'common': {}}
    for key, value in flat.items():
        if value is None:
            continue
        if key in _FLAT_TO_SECTION:
            section, short_name = _FLAT_TO_SECTION[key]
            result.setdefault(section, {})[short_name] = value
        else:
            result['common'][key] = value
    return result


def sectioned_to_flat(data: dict) -> dict:
    """Convert sectioned TOML dict to flat dict for CacheSettings validation."""
    flat: dict = {}
    for key, value in data.items():
        if isinstance(value, dict) and key in _SECTION_TO_FLAT:
            # Known section: expand short names to flat names
            mapping = _SECTION_TO_FLAT[key]
            for short_name, field_value in value.items():
                flat[mapping.get(short_name, short_name)] = field_value
        elif isinstance(value, dict):
            # common and unknown sections: pass keys through as-is
            flat.update(value)
        else:
            # Top-level key (flat TOML)
            flat[key] = value
    return flat
