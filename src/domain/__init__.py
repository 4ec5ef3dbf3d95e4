"""Domain layer - settings and region models."""
from domain.models import BBox, ForecastSettings, Region

__all__ = [
    'BBox',
    'ForecastSettings',
    'Region',
]
