from enum import Enum

# Milliseconds per hour / day
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# Forecast horizon: one hourly day, then six days of 3-hourly slices,
# plus the closing slice.
HOURLY_SLICES = 24
THREE_HOURLY_SLICES = 6 * 8
FORECAST_DATES_COUNT = HOURLY_SLICES + THREE_HOURLY_SLICES + 1

# Step between slices (hours)
HOURLY_STEP_H = 1
THREE_HOURLY_STEP_H = 3

# Upper-bound estimate of one stored forecast slice of one tile (bytes).
# Used for "would download" sizes, never measured.
TILE_BYTE_BUDGET = 40_000

# Zoom level of the geo tile grid used for forecast data
GEO_TILE_ZOOM = 4

# Tile id packing: x in the low word, y in the high word
TILE_COORD_BITS = 32
TILE_COORD_MASK = (1 << TILE_COORD_BITS) - 1

# Web Mercator latitude limit (degrees)
MERCATOR_MAX_LAT_DEG = 85.05112878
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LAT_MAX_DEG = 90.0
# Small epsilon for tile edge computations
XY_EPSILON = 1e-9

# Sentinel for "never updated" in the last-update preference
LAST_UPDATE_NEVER = -1

# Days after which a finished forecast is considered outdated
FORECAST_OUTDATED_DAYS = 7


# Preference key prefixes (suffixed with the region id)
PREF_FORECAST_DOWNLOAD_STATE_PREFIX = 'forecast_download_state_'
PREF_FORECAST_LAST_UPDATE_PREFIX = 'forecast_last_update_'
PREF_FORECAST_FREQUENCY_PREFIX = 'forecast_frequency_'
PREF_FORECAST_WIFI_PREFIX = 'forecast_download_via_wifi_'

# --- Storage / HTTP defaults
TILE_CACHE_DIR = '.cache/forecast'
PREFERENCES_FILE = 'forecast_preferences.toml'
SETTINGS_FILE = 'configs/forecast.toml'
FORECAST_TILE_URL_TEMPLATE = (
    'https://maptile.example.org/weather/{zoom}/{x}/{y}/{date}.tiff'
)
# Parallel HTTP requests per engine
DOWNLOAD_CONCURRENCY = 8
# Background workers for size computation and eviction
BACKGROUND_WORKERS = 4

HTTP_TIMEOUT_DEFAULT = 20.0
HTTP_RETRIES_DEFAULT = 4
HTTP_BACKOFF_FACTOR = 1.6

HTTP_OK = 200
HTTP_NOT_FOUND = 404
HTTP_5XX_MIN = 500
HTTP_5XX_MAX = 600


class DownloadState(str, Enum):
    """Persisted per-region forecast download state."""

    UNDEFINED = 'UNDEFINED'  # nothing downloaded, or fully purged
    IN_PROGRESS = 'IN_PROGRESS'  # active or interrupted cycle
    FINISHED = 'FINISHED'  # at least one complete cycle


class UpdateFrequency(str, Enum):
    """How often a downloaded forecast is refreshed automatically."""

    UNDEFINED = 'UNDEFINED'
    SEMI_DAILY = 'SEMI_DAILY'
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'

    @property
    def seconds_required(self) -> int:
        return UPDATE_FREQUENCY_SECONDS[self]


UPDATE_FREQUENCY_SECONDS: dict[UpdateFrequency, int] = {
    UpdateFrequency.UNDEFINED: 0,
    UpdateFrequency.SEMI_DAILY: 12 * 60 * 60,
    UpdateFrequency.DAILY: 24 * 60 * 60,
    UpdateFrequency.WEEKLY: 7 * 24 * 60 * 60,
}

OFFLINE_STATES = (DownloadState.IN_PROGRESS, DownloadState.FINISHED)
