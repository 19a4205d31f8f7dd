"""
District climatology: long-term monthly baselines (2014-2024 averages).

Provides the "normal" each anomaly is measured against:
  - BaselineStore: one HistoricalBaseline per district name, loaded from the
    baseline feature table (CSV export).
  - forecast_window_baseline: the baseline expectation for the 16-day
    forecast window, weighted by how many of its days fall in each month.

Precipitation normals are monthly totals, so they are scaled by day share.
Temperature normals are monthly means, so a window inside one month keeps
the monthly mean and a window spanning two months takes a day-weighted mean
over a flat 30-day month.
"""
from __future__ import annotations

import csv
import logging
from datetime import date, timedelta
from pathlib import Path

import config
from models.baseline import HistoricalBaseline

logger = logging.getLogger("district_ews.climatology")


class BaselineStore:
    """Read-only lookup of HistoricalBaseline records by district name."""

    def __init__(self, records: list[HistoricalBaseline] | None = None) -> None:
        self._records: dict[str, HistoricalBaseline] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: HistoricalBaseline) -> bool:
        """Add a record; the first record for a name wins."""
        if record.name in self._records:
            logger.warning("Duplicate baseline for %s ignored", record.name)
            return False
        self._records[record.name] = record
        return True

    def get(self, name: str) -> HistoricalBaseline | None:
        return self._records.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)

    @classmethod
    def from_csv(cls, path: Path | str) -> BaselineStore:
        """
        Load the baseline table.

        Expected columns: district_name, rainfall_jan..rainfall_dec,
        temperature_jan..temperature_dec.  Rows with missing or non-numeric
        monthly values are skipped.
        """
        store = cls()
        skipped = 0
        with open(path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                record = _parse_row(row)
                if record is None:
                    skipped += 1
                    continue
                store.add(record)
        logger.info(
            "Loaded %d district baselines from %s (%d rows skipped)",
            len(store), path, skipped,
        )
        return store


def _parse_row(row: dict[str, str]) -> HistoricalBaseline | None:
    name = (row.get(config.BASELINE_NAME_COLUMN) or "").strip()
    if not name:
        logger.warning("Baseline row without %s skipped", config.BASELINE_NAME_COLUMN)
        return None
    try:
        precipitation = [
            float(row[config.BASELINE_PRECIP_PREFIX + key]) for key in config.MONTH_KEYS
        ]
        temperature = [
            float(row[config.BASELINE_TEMP_PREFIX + key]) for key in config.MONTH_KEYS
        ]
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Baseline row for %s skipped: %s", name, exc)
        return None
    return HistoricalBaseline(name=name, precipitation=precipitation, temperature=temperature)


# ── Forecast window interpolation ─────────────────────────────────────────────

def days_in_month(month: int) -> int:
    return config.DAYS_PER_MONTH[month - 1]


def forecast_window_baseline(
    start: date,
    parameter: str,
    monthly: list[float],
    horizon_days: int = config.FORECAST_HORIZON_DAYS,
) -> float:
    """
    Baseline expectation for the window [start, start + horizon_days).

    The window crosses a month boundary when start + horizon_days lands in
    another month; d1 counts the start month's days (start day inclusive)
    and d2 = horizon_days - d1 the following month's.
    """
    start_month = start.month
    end_month = (start + timedelta(days=horizon_days)).month
    v1 = monthly[start_month - 1]

    if parameter == "precipitation":
        if start_month == end_month:
            return v1 / days_in_month(start_month) * horizon_days
        d1 = days_in_month(start_month) - start.day + 1
        d2 = horizon_days - d1
        v2 = monthly[end_month - 1]
        return v1 / days_in_month(start_month) * d1 + v2 / days_in_month(end_month) * d2

    if parameter == "temperature":
        if start_month == end_month:
            return v1
        d1 = config.TEMPERATURE_MONTH_DAYS - start.day + 1
        d2 = horizon_days - d1
        v2 = monthly[end_month - 1]
        return (v1 * d1 + v2 * d2) / horizon_days

    raise ValueError(f"Unknown parameter: {parameter!r}")
