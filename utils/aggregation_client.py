"""
Aggregation backend: zonal reductions of forecast and reanalysis rasters.

The core never talks to Earth Engine directly: it asks an AggregationBackend
for the samples of a batch of districts and reduces them itself.  The Earth
Engine implementation builds one deferred computation per batch (the steps of
the newest GFS run + the latest ERA5-Land months, reduced over every district)
and evaluates it with a single getInfo() call, run off the event loop since
the client blocks.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any

import ee

import config
from models.samples import ForecastSample, ObservationSample, UnitSamples
from models.unit import SpatialUnit

logger = logging.getLogger("district_ews.aggregation")

_ee_initialized = False


class BackendError(Exception):
    """The backend failed to aggregate a whole batch."""


class AggregationBackend(ABC):
    @abstractmethod
    async def fetch_batch(
        self, units: list[SpatialUnit], parameter: str, start: date
    ) -> dict[str, UnitSamples]:
        """Return fetched samples keyed by unit_id; raise BackendError on failure."""


def init_ee(project_id: str | None = config.EE_PROJECT_ID) -> None:
    """Initialize the Earth Engine API exactly once."""
    global _ee_initialized
    if _ee_initialized:
        return
    try:
        if project_id:
            ee.Initialize(project=project_id)
            logger.info("Earth Engine initialized with project: %s", project_id)
        else:
            ee.Initialize()
            logger.info("Earth Engine initialized (default project)")
        _ee_initialized = True
    except Exception as exc:
        logger.error("Failed to initialize Earth Engine: %s", exc)
        raise BackendError(
            "Could not initialize Earth Engine. "
            "Have you run 'earthengine authenticate'?"
        ) from exc


# ── Payload parsing ───────────────────────────────────────────────────────────

def _epoch_ms_to_datetime(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _features(collection: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not collection:
        return []
    return [f.get("properties") or {} for f in collection.get("features", [])]


def parse_batch_payload(
    payload: dict[str, Any], units: list[SpatialUnit]
) -> dict[str, UnitSamples]:
    """
    Turn an evaluated batch into UnitSamples.

    payload = {
        "forecast":     FeatureCollection of {unit_id, run_time (ms), forecast_hour, value},
        "observations": FeatureCollection of {unit_id, period (ms), value},
    }
    A missing "value" property means the reduction covered no pixels.
    """
    by_unit = {u.unit_id: UnitSamples(unit_id=u.unit_id) for u in units}

    for props in _features(payload.get("forecast")):
        samples = by_unit.get(str(props.get("unit_id")))
        if samples is None or props.get("run_time") is None or props.get("forecast_hour") is None:
            continue
        samples.forecasts.append(
            ForecastSample(
                unit_id=samples.unit_id,
                run_time=_epoch_ms_to_datetime(props["run_time"]),
                forecast_hour=int(props["forecast_hour"]),
                value=_optional_float(props.get("value")),
            )
        )

    for props in _features(payload.get("observations")):
        samples = by_unit.get(str(props.get("unit_id")))
        if samples is None or props.get("period") is None:
            continue
        samples.observations.append(
            ObservationSample(
                unit_id=samples.unit_id,
                period=_epoch_ms_to_datetime(props["period"]).date().replace(day=1),
                value=_optional_float(props.get("value")),
            )
        )

    return by_unit


# ── Earth Engine ──────────────────────────────────────────────────────────────


class EarthEngineBackend(AggregationBackend):
    """Reduce GFS and ERA5-Land rasters over district polygons on Earth Engine."""

    def __init__(self, project_id: str | None = config.EE_PROJECT_ID) -> None:
        self._project_id = project_id

    async def fetch_batch(
        self, units: list[SpatialUnit], parameter: str, start: date
    ) -> dict[str, UnitSamples]:
        try:
            payload = await asyncio.to_thread(self._evaluate, units, parameter, start)
        except BackendError:
            raise
        except Exception as exc:
            raise BackendError(f"Earth Engine evaluation failed: {exc}") from exc
        return parse_batch_payload(payload, units)

    def _evaluate(self, units: list[SpatialUnit], parameter: str, start: date) -> dict[str, Any]:
        init_ee(self._project_id)
        districts = ee.FeatureCollection([
            ee.Feature(ee.Geometry(u.geojson), {"unit_id": u.unit_id})
            for u in units
        ])
        day = ee.Date(start.isoformat())
        computation = ee.Dictionary({
            "forecast": self._forecast_reductions(districts, parameter, day),
            "observations": self._observation_reductions(districts, parameter, day),
        })
        return computation.getInfo()

    @staticmethod
    def _forecast_reductions(
        districts: ee.FeatureCollection, parameter: str, day: ee.Date
    ) -> ee.FeatureCollection:
        band = config.GFS_BANDS[parameter]
        gfs = (
            ee.ImageCollection(config.GFS_COLLECTION)
            .filterDate(day.advance(-1, "day"), day.advance(1, "day"))
            .filter(ee.Filter.lte("forecast_hours", config.MAX_FORECAST_HOUR))
            .filter(ee.Filter.gte("forecast_hours", 0))
            .select(band)
        )
        # The window holds several model runs; reduce only the newest one.
        latest = gfs.sort("creation_time", False).first().get("creation_time")
        gfs = gfs.filter(ee.Filter.eq("creation_time", latest))

        def reduce_step(img):
            img = ee.Image(img)
            reduced = img.reduceRegions(
                collection=districts,
                reducer=ee.Reducer.mean(),
                scale=config.GFS_SCALE_METERS,
            )
            return reduced.map(lambda f: ee.Feature(None, {
                "unit_id": f.get("unit_id"),
                "run_time": img.get("creation_time"),
                "forecast_hour": img.get("forecast_hours"),
                "value": f.get("mean"),
            }))

        return ee.FeatureCollection(gfs.map(reduce_step)).flatten()

    @staticmethod
    def _observation_reductions(
        districts: ee.FeatureCollection, parameter: str, day: ee.Date
    ) -> ee.FeatureCollection:
        band = config.ERA5_BANDS[parameter]
        era5 = (
            ee.ImageCollection(config.ERA5_COLLECTION)
            .select(band)
            .filterDate(config.ERA5_START_DATE, day)
            .sort("system:time_start", False)
            .limit(config.OBSERVATION_MONTHS)
        )

        def reduce_month(img):
            img = ee.Image(img)
            reduced = img.reduceRegions(
                collection=districts,
                reducer=ee.Reducer.mean(),
                scale=config.ERA5_SCALE_METERS,
            )
            return reduced.map(lambda f: ee.Feature(None, {
                "unit_id": f.get("unit_id"),
                "period": img.get("system:time_start"),
                "value": f.get("mean"),
            }))

        return ee.FeatureCollection(era5.map(reduce_month)).flatten()
