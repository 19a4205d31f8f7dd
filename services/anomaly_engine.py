"""
Anomaly engine: combines baseline, forecast and observations per district.

Pipeline for one district:
  1. Look up the district's baseline by name (missing -> invalid result)
  2. Weight the baseline over the 16-day forecast window
  3. Reduce the latest GFS run to one forecast value
  4. Sum the last 3 months of ERA5-Land deviations
  5. forecast_diff = forecast - weighted baseline
     combined_diff = past_diff + forecast_diff
"""
from __future__ import annotations

import logging
from datetime import date

from models.anomaly import AnomalyResult
from models.baseline import HistoricalBaseline
from models.samples import UnitSamples
from models.unit import SpatialUnit
from services.climatology import BaselineStore, forecast_window_baseline
from services.forecast_aggregator import aggregate_forecast
from services.observation_aggregator import past_deviation

logger = logging.getLogger("district_ews.anomaly_engine")


def combine(
    unit: SpatialUnit,
    baseline: HistoricalBaseline | None,
    forecast_value: float,
    forecast_baseline: float,
    past_diff: float,
) -> AnomalyResult:
    if baseline is None:
        return AnomalyResult.invalid(unit.unit_id, unit.name)

    forecast_diff = forecast_value - forecast_baseline
    return AnomalyResult(
        unit_id=unit.unit_id,
        name=unit.name,
        past_diff=past_diff,
        forecast_diff=forecast_diff,
        combined_diff=past_diff + forecast_diff,
    )


def compute_unit_anomaly(
    unit: SpatialUnit,
    samples: UnitSamples | None,
    store: BaselineStore,
    parameter: str,
    start: date,
) -> AnomalyResult:
    """Run the full per-district pipeline on already-fetched samples."""
    baseline = store.get(unit.name)
    if baseline is None:
        logger.debug("No baseline for %s (%s)", unit.name, unit.unit_id)
        return combine(unit, None, 0.0, 0.0, 0.0)

    samples = samples or UnitSamples(unit_id=unit.unit_id)
    weighted = forecast_window_baseline(start, parameter, baseline.monthly(parameter))
    forecast_value = aggregate_forecast(samples.forecasts, parameter)
    past_diff = past_deviation(samples.observations, baseline, parameter)

    result = combine(unit, baseline, forecast_value, weighted, past_diff)
    logger.debug(
        "%s: past=%.2f forecast=%.2f (value=%.2f baseline=%.2f) combined=%.2f",
        unit.name, result.past_diff, result.forecast_diff,
        forecast_value, weighted, result.combined_diff,
    )
    return result
