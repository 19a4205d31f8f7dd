"""Past-window deviation from ERA5-Land monthly aggregates."""
from __future__ import annotations

import logging

import config
from models.baseline import HistoricalBaseline
from models.samples import ObservationSample

logger = logging.getLogger("district_ews.observations")


def latest_periods(
    samples: list[ObservationSample], count: int = config.OBSERVATION_MONTHS
) -> list[ObservationSample]:
    """The *count* most recent monthly samples, newest first."""
    return sorted(samples, key=lambda s: s.period, reverse=True)[:count]


def observed_value(sample: ObservationSample, parameter: str, baseline_value: float) -> float:
    """
    Convert a raw reduction into the baseline's unit.

    Precipitation: metres -> mm, no pixels counts as 0 mm.
    Temperature: Kelvin -> °C, no pixels falls back to the baseline itself
    so the month contributes no anomaly.
    """
    if parameter == "precipitation":
        raw = sample.value if sample.value is not None else 0.0
        return raw * config.METERS_TO_MM
    if parameter == "temperature":
        if sample.value is None:
            return baseline_value
        return sample.value - config.KELVIN_OFFSET
    raise ValueError(f"Unknown parameter: {parameter!r}")


def past_deviation(
    samples: list[ObservationSample],
    baseline: HistoricalBaseline,
    parameter: str,
) -> float:
    """Sum of (observed - baseline) over the latest observation months."""
    periods = latest_periods(samples)
    if len(periods) < config.OBSERVATION_MONTHS:
        logger.debug(
            "%s: only %d of %d observation months available",
            baseline.name, len(periods), config.OBSERVATION_MONTHS,
        )

    total = 0.0
    for sample in periods:
        expected = baseline.value_for_month(parameter, sample.period.month)
        total += observed_value(sample, parameter, expected) - expected
    return total
