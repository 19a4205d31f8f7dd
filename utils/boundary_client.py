from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiohttp
from shapely.geometry import shape

import config
from models.unit import SpatialUnit

logger = logging.getLogger("district_ews.boundaries")


class BoundaryLoadError(Exception):
    pass


def parse_boundaries(
    data: dict[str, Any],
    id_property: str = config.BOUNDARY_ID_PROPERTY,
    name_property: str = config.BOUNDARY_NAME_PROPERTY,
) -> list[SpatialUnit]:
    """
    Build SpatialUnits from a GeoJSON FeatureCollection.

    Features without a name or a polygonal geometry are skipped.  When the id
    property is absent the feature's position is used as "#<position>", which
    cannot collide with a real id.
    """
    if data.get("type") != "FeatureCollection":
        raise BoundaryLoadError(f"Expected a FeatureCollection, got {data.get('type')!r}")

    units: list[SpatialUnit] = []
    for i, feature in enumerate(data.get("features", [])):
        props = feature.get("properties") or {}
        name = props.get(name_property)
        if not name:
            logger.warning("Boundary feature %d has no %s, skipped", i, name_property)
            continue
        try:
            geometry = shape(feature.get("geometry"))
        except Exception as exc:
            logger.warning("Boundary %s has an unreadable geometry, skipped: %s", name, exc)
            continue
        if geometry.geom_type not in ("Polygon", "MultiPolygon") or geometry.is_empty:
            logger.warning("Boundary %s is a %s, skipped", name, geometry.geom_type)
            continue
        raw_id = props.get(id_property)
        unit_id = str(raw_id) if raw_id not in (None, "") else f"#{i}"
        units.append(SpatialUnit(unit_id=unit_id, name=str(name), geometry=geometry))
    return units


class BoundaryClient:
    """Load district boundaries from a local GeoJSON file or an http(s) URL."""

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": config.USER_AGENT})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def load(self, source: str = config.BOUNDARY_SOURCE) -> list[SpatialUnit]:
        if source.startswith(("http://", "https://")):
            data = await self._fetch(source)
        else:
            data = self._read(Path(source))
        units = parse_boundaries(data)
        logger.info("Loaded %d district boundaries from %s", len(units), source)
        return units

    async def _fetch(self, url: str) -> dict[str, Any]:
        session = await self._ensure_session()
        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=config.BOUNDARY_FETCH_TIMEOUT_SECONDS),
            ) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
            raise BoundaryLoadError(f"Could not fetch boundaries from {url}: {exc}") from exc

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise BoundaryLoadError(f"Could not read boundaries from {path}: {exc}") from exc
