"""
Forecast aggregation: reduce GFS samples to one 16-day value per district.

Only the latest model run is used.  Precipitation rates (mm/s) are
integrated over the horizon: hourly steps weigh 3600 s, 3-hourly steps
10800 s, and a missing step contributes nothing.  Temperature is the plain
mean of whatever steps are available.
"""
from __future__ import annotations

import logging
from datetime import datetime

import numpy as np

import config
from models.samples import ForecastSample

logger = logging.getLogger("district_ews.forecast")


def latest_run(samples: list[ForecastSample]) -> list[ForecastSample]:
    """Keep only the samples of the most recent model run."""
    if not samples:
        return []
    newest: datetime = max(s.run_time for s in samples)
    return [s for s in samples if s.run_time == newest]


def integrate_precipitation(samples: list[ForecastSample]) -> float:
    """Total precipitation (mm) over the forecast horizon."""
    rates: dict[int, float] = {}
    for s in samples:
        if s.value is not None:
            rates[s.forecast_hour] = s.value

    total = 0.0
    for hour in config.HOURLY_FORECAST_HOURS:
        total += rates.get(hour, 0.0) * config.SECONDS_PER_HOUR
    for hour in config.THREE_HOURLY_FORECAST_HOURS:
        total += rates.get(hour, 0.0) * config.SECONDS_PER_THREE_HOURS
    return total


def mean_temperature(samples: list[ForecastSample]) -> float:
    """Mean forecast temperature (°C); missing steps are left out of the mean."""
    values = [s.value for s in samples if s.value is not None]
    if not values:
        return 0.0
    return float(np.mean(values))


def aggregate_forecast(samples: list[ForecastSample], parameter: str) -> float:
    run = latest_run(samples)
    if not run:
        logger.debug("No forecast samples; forecast value defaults to 0")
        return 0.0

    if parameter == "precipitation":
        return integrate_precipitation(run)
    if parameter == "temperature":
        if all(s.value is None for s in run):
            logger.debug("Forecast run %s has no temperature values", run[0].run_time)
        return mean_temperature(run)
    raise ValueError(f"Unknown parameter: {parameter!r}")
