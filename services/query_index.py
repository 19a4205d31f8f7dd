from __future__ import annotations

import logging
from dataclasses import dataclass

from shapely.geometry import Point
from shapely.strtree import STRtree

from models.anomaly import AnomalyResult
from models.unit import SpatialUnit

logger = logging.getLogger("district_ews.query_index")


@dataclass(frozen=True)
class QueryResponse:
    status: str  # "hit", "no_data" (district has no valid result) or "miss"
    unit: SpatialUnit | None = None
    result: AnomalyResult | None = None

    @property
    def found(self) -> bool:
        return self.status == "hit"


MISS = QueryResponse(status="miss")


class SpatialQueryIndex:
    """Point-in-polygon lookup from a coordinate to a district and its result."""

    def __init__(self, units: list[SpatialUnit], results: list[AnomalyResult]) -> None:
        self._units = list(units)
        self._tree = STRtree([u.geometry for u in self._units]) if self._units else None
        self._results = {r.unit_id: r for r in results if r.valid}

    def unit_at(self, lon: float, lat: float) -> SpatialUnit | None:
        if self._tree is None:
            return None
        hits = self._tree.query(Point(lon, lat), predicate="within")
        if len(hits) == 0:
            return None
        if len(hits) > 1:
            logger.debug("(%.4f, %.4f) falls in %d overlapping districts", lon, lat, len(hits))
        return self._units[int(min(hits))]

    def query(self, lon: float, lat: float) -> QueryResponse:
        unit = self.unit_at(lon, lat)
        if unit is None:
            return MISS
        result = self._results.get(unit.unit_id)
        if result is None:
            return QueryResponse(status="no_data", unit=unit)
        return QueryResponse(status="hit", unit=unit, result=result)
