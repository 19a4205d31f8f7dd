from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class ForecastSample:
    """Spatial mean of one forecast step over a district."""

    unit_id: str
    run_time: datetime  # model run (creation) time
    forecast_hour: int
    value: float | None  # rate in mm/s or temperature in °C; None = no pixels


@dataclass(frozen=True)
class ObservationSample:
    """Spatial mean of one monthly reanalysis image over a district."""

    unit_id: str
    period: date  # first day of the month
    value: float | None  # metres of precipitation or Kelvin; None = no pixels


@dataclass
class UnitSamples:
    """Everything the aggregation backend fetched for one district."""

    unit_id: str
    forecasts: list[ForecastSample] = field(default_factory=list)
    observations: list[ObservationSample] = field(default_factory=list)
