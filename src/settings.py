import logging
import os
from pathlib import Path

import tomlkit

from domain.models import BBox, ForecastSettings, Region
from domain.toml_sections import flat_to_sectioned, sectioned_to_flat
from shared.constants import SETTINGS_FILE

logger = logging.getLogger(__name__)


def _user_config_dir() -> Path:
    """
    Determine the configuration directory.

    1) If <project_root>/configs exists, use it (run-from-repo setups).
    2) Otherwise fall back to %APPDATA%/OfflineForecast/configs
       or ~/AppData/Roaming/OfflineForecast/configs when APPDATA is not set.
    """
    project_root = Path(__file__).resolve().parent.parent
    local_configs = project_root / 'configs'
    if local_configs.exists():
        return local_configs
    return (
        Path(os.getenv('APPDATA') or (Path.home() / 'AppData' / 'Roaming'))
        / 'OfflineForecast'
        / 'configs'
    )


def default_settings_path() -> Path:
    return _user_config_dir() / Path(SETTINGS_FILE).name


def _read_toml(path: Path) -> dict:
    if not path.exists():
        msg = f'Settings file not found: {path}'
        raise FileNotFoundError(msg)
    return tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()


def load_settings(path: str | Path | None = None) -> ForecastSettings:
    """
    Load and validate ForecastSettings from a TOML file.

    Without a path the default location is used; a missing default file
    yields the built-in defaults, a missing explicit file is an error.
    """
    if path is None:
        default = default_settings_path()
        if not default.exists():
            logger.info('No settings file at %s, using defaults', default)
            return ForecastSettings()
        path = default
    data = _read_toml(Path(path))
    settings = ForecastSettings.model_validate(sectioned_to_flat(data))
    logger.info(
        'Settings loaded from %s: enabled=%s zoom=%d',
        path,
        settings.enabled,
        settings.zoom,
    )
    return settings


def save_settings(path: str | Path, settings: ForecastSettings) -> Path:
    """Save settings to TOML, keeping any [[regions]] already in the file."""
    path = Path(path)
    doc = (
        tomlkit.parse(path.read_text(encoding='utf-8'))
        if path.exists()
        else tomlkit.document()
    )
    for section, values in flat_to_sectioned(settings.model_dump()).items():
        table = tomlkit.table()
        for key, value in values.items():
            table[key] = value
        doc[section] = table
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomlkit.dumps(doc), encoding='utf-8')
    return path


def load_regions(path: str | Path) -> list[Region]:
    """
    Read [[regions]] tables from a TOML file.

    Each entry needs id, top, left, bottom, right; name is optional.
    """
    data = _read_toml(Path(path))
    regions = []
    for index, entry in enumerate(data.get('regions', [])):
        try:
            region = Region(
                region_id=str(entry['id']),
                name=str(entry.get('name', '')),
                bbox=BBox(
                    top=entry['top'],
                    left=entry['left'],
                    bottom=entry['bottom'],
                    right=entry['right'],
                ),
            )
        except KeyError as e:
            msg = f'Region #{index + 1} in {path} is missing {e.args[0]!r}'
            raise ValueError(msg) from e
        regions.append(region)
    logger.info('Loaded %d regions from %s', len(regions), path)
    return regions
