from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from shapely.geometry.base import BaseGeometry


@dataclass(frozen=True)
class SpatialUnit:
    """An administrative polygon (district) that anchors per-region computations."""

    unit_id: str
    name: str  # join key into the baseline table
    geometry: BaseGeometry  # Polygon or MultiPolygon, lon/lat degrees

    @property
    def geojson(self) -> dict[str, Any]:
        return self.geometry.__geo_interface__
