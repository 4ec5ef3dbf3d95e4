"""Tests for settings and region loading."""

import pytest

from domain.models import ForecastSettings
from settings import load_regions, load_settings, save_settings

SETTINGS_TOML = """
[forecast]
enabled = false
zoom = 5

[cache]
dir = "tiles"

[http]
retries = 7
url_template = "https://tiles.test/{zoom}/{x}/{y}/{date}.tiff"

[[regions]]
id = "alps"
name = "Alps"
top = 48.0
left = 5.0
bottom = 44.0
right = 16.0

[[regions]]
id = 42
top = 10
left = 170
bottom = 0
right = -170
"""


@pytest.fixture
def settings_file(tmp_path):
    path = tmp_path / 'forecast.toml'
    path.write_text(SETTINGS_TOML, encoding='utf-8')
    return path


class TestLoadSettings:
    """Tests for load_settings."""

    def test_sectioned_file(self, settings_file):
        settings = load_settings(settings_file)
        assert settings.enabled is False
        assert settings.zoom == 5
        assert settings.cache_dir == 'tiles'
        assert settings.http_retries == 7
        assert settings.tile_url_template.startswith('https://tiles.test/')

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / 'missing.toml')


class TestSaveSettings:
    """Tests for save_settings."""

    def test_keeps_regions(self, settings_file):
        """Saving over an existing file leaves its regions in place."""
        save_settings(settings_file, ForecastSettings(zoom=6, http_retries=2))
        assert load_settings(settings_file).zoom == 6
        assert load_settings(settings_file).http_retries == 2
        assert [r.region_id for r in load_regions(settings_file)] == ['alps', '42']

    def test_new_file(self, tmp_path):
        path = save_settings(tmp_path / 'sub' / 'new.toml', ForecastSettings(zoom=3))
        assert path.exists()
        assert load_settings(path).zoom == 3


class TestLoadRegions:
    """Tests for load_regions."""

    def test_regions(self, settings_file):
        alps, other = load_regions(settings_file)
        assert alps.name == 'Alps'
        assert alps.bbox.top == 48.0
        assert alps.bbox.right == 16.0
        assert other.region_id == '42'
        assert other.name == ''
        assert other.bbox.left == 170

    def test_missing_key(self, tmp_path):
        """An incomplete region entry is a configuration error."""
        path = tmp_path / 'broken.toml'
        path.write_text('[[regions]]\nid = "alps"\ntop = 48.0\n', encoding='utf-8')
        with pytest.raises(ValueError, match="missing 'left'"):
            load_regions(path)

    def test_no_regions(self, tmp_path):
        path = tmp_path / 'empty.toml'
        path.write_text('[forecast]\nzoom = 4\n', encoding='utf-8')
        assert load_regions(path) == []
