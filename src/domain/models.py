from pydantic import BaseModel, field_validator, model_validator

from shared.constants import (
    BACKGROUND_WORKERS,
    DOWNLOAD_CONCURRENCY,
    FORECAST_TILE_URL_TEMPLATE,
    GEO_TILE_ZOOM,
    HTTP_BACKOFF_FACTOR,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    PREFERENCES_FILE,
    TILE_CACHE_DIR,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
)


class BBox(BaseModel):
    """Geographic bounding box in degrees (WGS84)."""

    model_config = {'frozen': True}

    top: float
    left: float
    bottom: float
    right: float

    @field_validator('top', 'bottom')
    @classmethod
    def validate_lat(cls, v: float) -> float:
        v = float(v)
        if not (-WORLD_LAT_MAX_DEG <= v <= WORLD_LAT_MAX_DEG):
            msg = f'Latitude out of range: {v}'
            raise ValueError(msg)
        return v

    @field_validator('left', 'right')
    @classmethod
    def validate_lng(cls, v: float) -> float:
        v = float(v)
        if not (-WORLD_LNG_HALF_SPAN_DEG <= v <= WORLD_LNG_HALF_SPAN_DEG):
            msg = f'Longitude out of range: {v}'
            raise ValueError(msg)
        return v

    @model_validator(mode='after')
    def validate_order(self) -> 'BBox':
        if self.bottom > self.top:
            msg = f'Bottom latitude {self.bottom} is north of top {self.top}'
            raise ValueError(msg)
        return self


class Region(BaseModel):
    """A downloadable region. Only the id and bounds matter to the cache."""

    model_config = {'frozen': True}

    region_id: str
    name: str = ''
    bbox: BBox

    @property
    def display_name(self) -> str:
        return self.name or self.region_id


class ForecastSettings(BaseModel):
    """Runtime settings of the offline forecast cache."""

    model_config = {
        'extra': 'ignore',  # unknown keys from older config files
    }

    # Feature switch; downloads are refused while disabled
    enabled: bool = True
    # Zoom of the geo tile grid
    zoom: int = GEO_TILE_ZOOM

    # Storage
    cache_dir: str = TILE_CACHE_DIR
    preferences_file: str = PREFERENCES_FILE

    # HTTP
    tile_url_template: str = FORECAST_TILE_URL_TEMPLATE
    http_timeout_s: float = HTTP_TIMEOUT_DEFAULT
    http_retries: int = HTTP_RETRIES_DEFAULT
    http_backoff_factor: float = HTTP_BACKOFF_FACTOR
    download_concurrency: int = DOWNLOAD_CONCURRENCY

    # Background pool for size computation and eviction
    background_workers: int = BACKGROUND_WORKERS

    @field_validator('zoom')
    @classmethod
    def validate_zoom(cls, v: int) -> int:
        v = int(v)
        if not (0 <= v <= 30):
            msg = 'Zoom must be in [0, 30]'
            raise ValueError(msg)
        return v

    @field_validator('download_concurrency', 'background_workers', 'http_retries')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        return max(1, int(v))
