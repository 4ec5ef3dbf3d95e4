"""Mapping layer between flat ForecastSettings fields and sectioned TOML format.

ForecastSettings remains a flat Pydantic model. This module provides two functions:
- flat_to_sectioned(): flat dict → sectioned dict (for TOML save)
- sectioned_to_flat(): sectioned dict → flat dict (for TOML load)
"""

from __future__ import annotations

# {section_name: {flat_field_name: short_name_in_toml}}
SECTION_MAP: dict[str, dict[str, str]] = {
    'cache': {
        'cache_dir': 'dir',
        'preferences_file': 'preferences_file',
    },
    'http': {
        'tile_url_template': 'url_template',
        'http_timeout_s': 'timeout_s',
        'http_retries': 'retries',
        'http_backoff_factor': 'backoff_factor',
        'download_concurrency': 'concurrency',
    },
}

# Sections holding data other than settings
NON_SETTINGS_SECTIONS = frozenset({'regions'})

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
    """Convert flat ForecastSettings dict to sectioned dict for TOML output."""
    result: dict = {'forecast': {}}
    for key, value in flat.items():
        if key in _FLAT_TO_SECTION:
            section, short_name = _FLAT_TO_SECTION[key]
            if section not in result:
                result[section] = {}
            result[section][short_name] = value
        else:
            result['forecast'][key] = value
    return result


def sectioned_to_flat(data: dict) -> dict:
    """Convert sectioned TOML dict to flat dict for ForecastSettings validation."""
    flat: dict = {}
    for key, value in data.items():
        if key in NON_SETTINGS_SECTIONS:
            continue
        if isinstance(value, dict) and key in _SECTION_TO_FLAT:
            # Known section: expand short names to flat names
            mapping = _SECTION_TO_FLAT[key]
            for short_name, field_value in value.items():
                flat_name = mapping.get(short_name, short_name)
                flat[flat_name] = field_value
        elif isinstance(value, dict):
            # 'forecast' and unknown sections: pass through keys as-is
            flat.update(value)
        else:
            # Top-level key (flat TOML)
            flat[key] = value
    return flat
