#!/usr/bin/env python3
"""
Early Warning System: unit test suite.
Tests every component in isolation without hitting Earth Engine.
"""
import asyncio
import math
import os
import sys
import tempfile
import traceback
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

from shapely.geometry import Point, box

import config
from main import _parse_args
from models.anomaly import AnomalyResult
from models.baseline import HistoricalBaseline
from models.samples import ForecastSample, ObservationSample, UnitSamples
from models.unit import SpatialUnit
from services.anomaly_engine import combine, compute_unit_anomaly
from services.batch_scheduler import BatchScheduler, SchedulerState, partition
from services.climatology import BaselineStore, forecast_window_baseline
from services.forecast_aggregator import (
    aggregate_forecast,
    integrate_precipitation,
    latest_run,
    mean_temperature,
)
from services.normalizer import color_for_index, color_indices, max_abs, normalize_layers
from services.observation_aggregator import latest_periods, past_deviation
from services.query_index import SpatialQueryIndex
from services.report import anomaly_status, format_unit_report
from utils.aggregation_client import parse_batch_payload
from utils.boundary_client import BoundaryLoadError, parse_boundaries

RUN_OLD = datetime(2025, 6, 1, 0, tzinfo=timezone.utc)
RUN_NEW = datetime(2025, 6, 1, 6, tzinfo=timezone.utc)
ALL_STEPS = list(config.HOURLY_FORECAST_HOURS) + list(config.THREE_HOURLY_FORECAST_HOURS)
FULL_HORIZON_SECONDS = 3600 * 120 + 10800 * 88


def _close(a, b, tol=1e-9):
    return math.isclose(a, b, rel_tol=0, abs_tol=tol)


def _baseline(name="Lahore", precip=10.0, temp=20.0):
    return HistoricalBaseline(name=name, precipitation=[precip] * 12, temperature=[temp] * 12)


def _unit(unit_id, name, x0=0.0, y0=0.0, size=1.0):
    return SpatialUnit(unit_id=unit_id, name=name, geometry=box(x0, y0, x0 + size, y0 + size))


def _rates(value, run=RUN_NEW, hours=ALL_STEPS, unit_id="u1"):
    return [ForecastSample(unit_id, run, h, value) for h in hours]


# ═══════════════════════════════════════════════════════════════════════════════
# 1. Baseline store
# ═══════════════════════════════════════════════════════════════════════════════


def _write_baseline_csv(path, rows):
    header = [config.BASELINE_NAME_COLUMN]
    header += [config.BASELINE_PRECIP_PREFIX + k for k in config.MONTH_KEYS]
    header += [config.BASELINE_TEMP_PREFIX + k for k in config.MONTH_KEYS]
    with open(path, "w", encoding="utf-8") as f:
        f.write(",".join(header) + "\n")
        for name, precip, temp in rows:
            f.write(",".join([name] + [str(precip)] * 12 + [str(temp)] * 12) + "\n")


def test_baseline_store_loads_csv():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "baseline.csv")
        _write_baseline_csv(path, [("Lahore", 25.0, 18.5), ("Multan", 12.0, 26.0)])
        store = BaselineStore.from_csv(path)
    assert len(store) == 2, f"Expected 2 records, got {len(store)}"
    assert "Lahore" in store
    assert store.get("Multan").value_for_month("temperature", 7) == 26.0
    assert store.get("Lahore").value_for_month("precipitation", 8) == 25.0


def test_baseline_store_first_duplicate_wins():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "baseline.csv")
        _write_baseline_csv(path, [("Lahore", 25.0, 18.5), ("Lahore", 99.0, 99.0)])
        store = BaselineStore.from_csv(path)
    assert len(store) == 1
    assert store.get("Lahore").precipitation[0] == 25.0


def test_baseline_store_skips_bad_rows():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "baseline.csv")
        _write_baseline_csv(path, [("Lahore", 25.0, 18.5), ("Quetta", "n/a", 10.0)])
        store = BaselineStore.from_csv(path)
    assert "Quetta" not in store
    assert len(store) == 1


def test_baseline_missing_name_is_none():
    store = BaselineStore([_baseline("Lahore")])
    assert store.get("Karachi") is None


def test_baseline_requires_twelve_months():
    try:
        HistoricalBaseline(name="Bad", precipitation=[1.0] * 11, temperature=[1.0] * 12)
    except ValueError:
        return
    raise AssertionError("Expected ValueError for 11 monthly values")


# ═══════════════════════════════════════════════════════════════════════════════
# 2. Forecast window baseline
# ═══════════════════════════════════════════════════════════════════════════════

# March (31 days) -> April (30 days)
MONTHLY = [0.0, 0.0, 62.0, 30.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


def test_window_precip_cross_month():
    """Start 2 days before the end of March: d1=2, d2=14."""
    value = forecast_window_baseline(date(2025, 3, 30), "precipitation", MONTHLY)
    expected = 62 / 31 * 2 + 30 / 30 * 14
    assert _close(value, expected), f"Expected {expected}, got {value}"
    assert _close(value, 18.0)


def test_window_temperature_cross_month_uses_flat_30_days():
    """Same start date; temperature counts d1 against a 30-day month: d1=1, d2=15."""
    value = forecast_window_baseline(date(2025, 3, 30), "temperature", MONTHLY)
    expected = (62 * 1 + 30 * 15) / 16
    assert _close(value, expected), f"Expected {expected}, got {value}"
    assert _close(value, 32.0)


def test_window_precip_single_month():
    value = forecast_window_baseline(date(2025, 4, 1), "precipitation", MONTHLY)
    assert _close(value, 30 / 30 * 16), f"Expected 16.0, got {value}"


def test_window_temperature_single_month_is_monthly_mean():
    value = forecast_window_baseline(date(2025, 4, 1), "temperature", MONTHLY)
    assert value == 30.0


def test_window_end_on_first_of_next_month_crosses():
    """Jan 16 + 16 days = Feb 1: the whole window weighs on January."""
    monthly = [31.0, 28.0] + [0.0] * 10
    value = forecast_window_baseline(date(2025, 1, 16), "precipitation", monthly)
    assert _close(value, 31.0 / 31 * 16 + 28.0 / 28 * 0)


def test_window_february_ignores_leap_year():
    monthly = [0.0, 28.0, 31.0] + [0.0] * 9
    leap = forecast_window_baseline(date(2024, 2, 20), "precipitation", monthly)
    common = forecast_window_baseline(date(2025, 2, 20), "precipitation", monthly)
    # d1 = 28 - 20 + 1 = 9, d2 = 7
    assert _close(leap, 28.0 / 28 * 9 + 31.0 / 31 * 7)
    assert _close(leap, common)


def test_window_unknown_parameter():
    try:
        forecast_window_baseline(date(2025, 4, 1), "humidity", MONTHLY)
    except ValueError:
        return
    raise AssertionError("Expected ValueError")


# ═══════════════════════════════════════════════════════════════════════════════
# 3. Forecast aggregation
# ═══════════════════════════════════════════════════════════════════════════════


def test_precip_integration_constant_rate():
    total = integrate_precipitation(_rates(1.0))
    expected = 1 * 3600 * 120 + 1 * 10800 * math.ceil((384 - 123) / 3 + 1)
    assert total == expected, f"Expected {expected}, got {total}"
    assert total == FULL_HORIZON_SECONDS


def test_precip_missing_step_is_zero_filled():
    samples = [s for s in _rates(1.0) if s.forecast_hour not in (5, 126)]
    samples.append(ForecastSample("u1", RUN_NEW, 126, None))
    total = integrate_precipitation(samples)
    assert total == FULL_HORIZON_SECONDS - 3600 - 10800, f"Got {total}"


def test_precip_ignores_off_grid_hours():
    samples = _rates(1.0) + [ForecastSample("u1", RUN_NEW, 0, 5.0), ForecastSample("u1", RUN_NEW, 124, 5.0)]
    assert integrate_precipitation(samples) == FULL_HORIZON_SECONDS


def test_latest_run_only():
    samples = _rates(1.0, run=RUN_OLD) + _rates(2.0, run=RUN_NEW)
    run = latest_run(samples)
    assert all(s.run_time == RUN_NEW for s in run)
    assert aggregate_forecast(samples, "precipitation") == 2 * FULL_HORIZON_SECONDS


def test_temperature_mean_excludes_missing():
    samples = [
        ForecastSample("u1", RUN_NEW, 0, 10.0),
        ForecastSample("u1", RUN_NEW, 3, 20.0),
        ForecastSample("u1", RUN_NEW, 6, None),
        ForecastSample("u1", RUN_OLD, 3, 100.0),
    ]
    assert aggregate_forecast(samples, "temperature") == 15.0
    assert mean_temperature([ForecastSample("u1", RUN_NEW, 0, None)]) == 0.0


def test_no_forecast_samples_is_zero():
    assert aggregate_forecast([], "precipitation") == 0.0
    assert aggregate_forecast([], "temperature") == 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# 4. Observation aggregation
# ═══════════════════════════════════════════════════════════════════════════════


def _months(values):
    periods = [date(2025, 3, 1), date(2025, 2, 1), date(2025, 1, 1), date(2024, 12, 1)]
    return [ObservationSample("u1", p, v) for p, v in zip(periods, values)]


def test_latest_three_periods():
    samples = list(reversed(_months([1, 2, 3, 4])))
    periods = [s.period for s in latest_periods(samples)]
    assert periods == [date(2025, 3, 1), date(2025, 2, 1), date(2025, 1, 1)]


def test_precip_past_deviation_zero_fill():
    # 50 mm, 20 mm, no pixels (0 mm) vs 10 mm normal; December is out of window
    samples = _months([0.05, 0.02, None, 0.5])
    diff = past_deviation(samples, _baseline(precip=10.0), "precipitation")
    assert _close(diff, 40.0), f"Expected 40.0, got {diff}"


def test_temperature_past_deviation_baseline_fallback():
    # 27 °C, missing (= normal), 10 °C vs 20 °C normal
    samples = _months([300.15, None, 283.15, 400.0])
    diff = past_deviation(samples, _baseline(temp=20.0), "temperature")
    assert _close(diff, -3.0), f"Expected -3.0, got {diff}"


def test_past_deviation_uses_month_specific_baseline():
    baseline = HistoricalBaseline(
        name="Lahore",
        precipitation=[float(m) for m in range(1, 13)],
        temperature=[0.0] * 12,
    )
    samples = [ObservationSample("u1", date(2025, 7, 1), 0.0)]
    assert past_deviation(samples, baseline, "precipitation") == -7.0


# ═══════════════════════════════════════════════════════════════════════════════
# 5. Anomaly combination
# ═══════════════════════════════════════════════════════════════════════════════


def test_combine_missing_baseline_is_invalid():
    result = combine(_unit("u1", "Nowhere"), None, 5.0, 1.0, 2.0)
    assert not result.valid
    assert result.past_diff == result.forecast_diff == result.combined_diff == config.INVALID_SENTINEL


def test_combine_is_additive():
    result = combine(_unit("u1", "Lahore"), _baseline(), 12.5, 4.25, -3.0)
    assert result.valid
    assert result.forecast_diff == 8.25
    assert _close(result.combined_diff, result.past_diff + result.forecast_diff)


def test_compute_unit_anomaly_end_to_end():
    unit = _unit("u1", "Lahore")
    store = BaselineStore([_baseline(precip=10.0)])
    samples = UnitSamples("u1", forecasts=_rates(1e-5), observations=_months([0.05, 0.02, None]))
    result = compute_unit_anomaly(unit, samples, store, "precipitation", date(2025, 4, 1))
    forecast = 1e-5 * FULL_HORIZON_SECONDS
    assert result.valid
    assert _close(result.forecast_diff, forecast - 10.0 / 30 * 16)
    assert _close(result.past_diff, 40.0)
    assert _close(result.combined_diff, result.past_diff + result.forecast_diff)


def test_compute_unit_anomaly_without_baseline():
    result = compute_unit_anomaly(
        _unit("u9", "Unknown"), None, BaselineStore(), "temperature", date(2025, 4, 1)
    )
    assert not result.valid
    assert result.name == "Unknown"


# ═══════════════════════════════════════════════════════════════════════════════
# 6. Batch scheduler
# ═══════════════════════════════════════════════════════════════════════════════


def test_partition_sizes():
    sizes = [len(b) for b in partition(list(range(12)), 5)]
    assert sizes == [5, 5, 2], f"Got {sizes}"
    assert partition([], 5) == []


def test_scheduler_rejects_zero_batch():
    try:
        BatchScheduler(batch_size=0)
    except ValueError:
        return
    raise AssertionError("Expected ValueError")


def test_scheduler_all_batches_succeed():
    seen = []

    async def process(batch):
        seen.append(list(batch))
        return [f"r{i}" for i in batch]

    scheduler = BatchScheduler(batch_size=5, delay_seconds=0)
    state = asyncio.run(scheduler.run(list(range(12)), process))
    assert seen == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9], [10, 11]]
    assert state.results == [f"r{i}" for i in range(12)]
    assert state.state == SchedulerState.DONE
    assert state.completed == 3 and state.failed == 0


def test_scheduler_skips_failed_batch():
    progress = []

    async def process(batch):
        if 5 in batch:
            raise RuntimeError("backend quota exceeded")
        return list(batch)

    scheduler = BatchScheduler(batch_size=5, delay_seconds=0)
    state = asyncio.run(scheduler.run(list(range(12)), process, progress=lambda i, n: progress.append((i, n))))
    assert state.results == [0, 1, 2, 3, 4, 10, 11], f"Got {state.results}"
    assert len(state.results) == 7
    assert state.failed == 1 and state.completed == 2
    assert progress == [(1, 3), (2, 3), (3, 3)]


def test_scheduler_one_batch_in_flight():
    in_flight = 0
    peak = 0

    async def process(batch):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return batch

    asyncio.run(BatchScheduler(batch_size=2, delay_seconds=0.001).run(list(range(7)), process))
    assert peak == 1


def test_scheduler_sleeps_between_batches_only():
    events = []

    async def process(batch):
        events.append("batch")
        if 5 in batch:
            raise RuntimeError("backend quota exceeded")
        return batch

    sleep = AsyncMock(side_effect=lambda delay: events.append("sleep"))
    with patch("services.batch_scheduler.asyncio.sleep", sleep):
        state = asyncio.run(BatchScheduler(batch_size=5, delay_seconds=0.25).run(list(range(12)), process))

    assert state.total_batches == 3
    assert sleep.await_count == state.total_batches - 1, f"Got {sleep.await_count} sleeps"
    assert all(c.args == (0.25,) for c in sleep.await_args_list)
    # a failed batch is still followed by the delay; the last batch is not
    assert events == ["batch", "sleep", "batch", "sleep", "batch"], f"Got {events}"


def test_scheduler_progress_error_does_not_abort():
    async def process(batch):
        return batch

    def broken(i, n):
        raise RuntimeError("widget gone")

    state = asyncio.run(BatchScheduler(batch_size=5, delay_seconds=0).run(list(range(6)), process, broken))
    assert state.results == list(range(6))


# ═══════════════════════════════════════════════════════════════════════════════
# 7. Normalizer
# ═══════════════════════════════════════════════════════════════════════════════


def _results(values, layer="combined_diff"):
    out = []
    for i, v in enumerate(values):
        fields = {"past_diff": 0.0, "forecast_diff": 0.0, "combined_diff": 0.0}
        fields[layer] = v
        out.append(AnomalyResult(f"u{i}", f"D{i}", **fields))
    return out


def test_normalizer_indices():
    scale = normalize_layers(_results([-10, 0, 5, 10]))["combined_diff"]
    assert scale.max_abs == 10
    indices = [scale.indices[f"u{i}"] for i in range(4)]
    assert indices == [0.0, 3.0, 4.5, 6.0], f"Got {indices}"


def test_normalizer_all_zero_uses_unit_scale():
    assert max_abs([0.0, 0.0]) == 1.0
    assert max_abs([]) == 1.0
    scale = normalize_layers(_results([0.0, 0.0]))["past_diff"]
    assert scale.max_abs == 1.0
    assert list(scale.indices.values()) == [3.0, 3.0]


def test_normalizer_clamps_and_skips_invalid():
    assert color_indices([20.0, -20.0], 10.0) == [6.0, 0.0]
    results = _results([4.0]) + [AnomalyResult.invalid("bad", "Bad")]
    scale = normalize_layers(results)["combined_diff"]
    assert "bad" not in scale.indices
    assert scale.max_abs == 4.0


def test_color_for_index():
    assert color_for_index(0) == config.PALETTE[0]
    assert color_for_index(3.0) == "#f7f7f7"
    assert color_for_index(6.0) == config.PALETTE[-1]


# ═══════════════════════════════════════════════════════════════════════════════
# 8. Spatial query index
# ═══════════════════════════════════════════════════════════════════════════════


def test_query_hit_no_data_and_miss():
    a = _unit("A", "Alpha", 0.0, 0.0)
    b = _unit("B", "Beta", 2.0, 0.0)
    result_a = AnomalyResult("A", "Alpha", 1.0, 2.0, 3.0)
    index = SpatialQueryIndex([a, b], [result_a, AnomalyResult.invalid("B", "Beta")])

    hit = index.query(0.5, 0.5)
    assert hit.status == "hit" and hit.result == result_a and hit.unit == a

    no_data = index.query(2.5, 0.5)
    assert no_data.status == "no_data" and no_data.unit == b and no_data.result is None

    miss = index.query(50.0, -30.0)
    assert miss.status == "miss" and miss.unit is None and miss.result is None


def test_query_empty_index():
    assert SpatialQueryIndex([], []).query(0.0, 0.0).status == "miss"


# ═══════════════════════════════════════════════════════════════════════════════
# 9. Boundaries, backend payload, reports
# ═══════════════════════════════════════════════════════════════════════════════


def test_parse_boundaries():
    data = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"GID_3": "PAK.1", "NAME_3": "Lahore"},
             "geometry": box(74.0, 31.0, 75.0, 32.0).__geo_interface__},
            {"type": "Feature", "properties": {"GID_3": "PAK.2"},
             "geometry": box(70.0, 30.0, 71.0, 31.0).__geo_interface__},
            {"type": "Feature", "properties": {"GID_3": "PAK.3", "NAME_3": "Point"},
             "geometry": Point(70.0, 30.0).__geo_interface__},
        ],
    }
    units = parse_boundaries(data)
    assert [u.unit_id for u in units] == ["PAK.1"]
    assert units[0].name == "Lahore"
    assert units[0].geometry.contains(Point(74.5, 31.5))


def test_parse_boundaries_position_id_does_not_collide():
    data = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"GID_3": "1", "NAME_3": "Lahore"},
             "geometry": box(74.0, 31.0, 75.0, 32.0).__geo_interface__},
            {"type": "Feature", "properties": {"NAME_3": "Kasur"},
             "geometry": box(73.0, 31.0, 74.0, 32.0).__geo_interface__},
        ],
    }
    ids = [u.unit_id for u in parse_boundaries(data)]
    assert ids == ["1", "#1"], f"Got {ids}"


def test_parse_boundaries_rejects_non_collection():
    try:
        parse_boundaries({"type": "Feature"})
    except BoundaryLoadError:
        return
    raise AssertionError("Expected BoundaryLoadError")


def test_parse_batch_payload():
    units = [_unit("u1", "Lahore"), _unit("u2", "Multan", 2.0)]
    run_ms = RUN_NEW.timestamp() * 1000
    payload = {
        "forecast": {"type": "FeatureCollection", "features": [
            {"properties": {"unit_id": "u1", "run_time": run_ms, "forecast_hour": 3, "value": 1e-4}},
            {"properties": {"unit_id": "u1", "run_time": run_ms, "forecast_hour": 6}},
            {"properties": {"unit_id": "zz", "run_time": run_ms, "forecast_hour": 6, "value": 1.0}},
        ]},
        "observations": {"type": "FeatureCollection", "features": [
            {"properties": {"unit_id": "u2", "period": datetime(2025, 5, 1, tzinfo=timezone.utc).timestamp() * 1000,
                            "value": 0.12}},
        ]},
    }
    samples = parse_batch_payload(payload, units)
    assert set(samples) == {"u1", "u2"}
    u1 = samples["u1"].forecasts
    assert len(u1) == 2 and u1[0].run_time == RUN_NEW and u1[0].forecast_hour == 3
    assert u1[1].value is None
    assert samples["u2"].observations[0].period == date(2025, 5, 1)
    assert samples["u2"].forecasts == []


def test_anomaly_status():
    assert anomaly_status(1.2) == "Above Baseline"
    assert anomaly_status(-0.1) == "Below Baseline"
    assert anomaly_status(0.0) == "At Baseline"
    assert anomaly_status(None) == ""


def test_format_unit_report():
    a = _unit("A", "Alpha")
    index = SpatialQueryIndex([a], [AnomalyResult("A", "Alpha", -1.0, 2.5, 1.5)])
    text = format_unit_report(index.query(0.5, 0.5), "precipitation")
    assert text.startswith("Alpha")
    assert "-1.00 mm (Below Baseline)" in text
    assert "1.50 mm (Above Baseline)" in text
    assert "Click on a District" in format_unit_report(index.query(9.0, 9.0), "temperature")


def test_cli_batch_size_must_be_positive():
    assert _parse_args(["--batch-size", "3"]).batch_size == 3
    for bad in ("0", "-2", "five"):
        try:
            with patch("sys.stderr"):
                _parse_args(["--batch-size", bad])
        except SystemExit as exc:
            assert exc.code == 2
            continue
        raise AssertionError(f"--batch-size {bad} was accepted")


# ═══════════════════════════════════════════════════════════════════════════════
# Runner
# ═══════════════════════════════════════════════════════════════════════════════


def _run_all():
    passed = failed = 0
    for name, fn in list(globals().items()):
        if not name.startswith("test_") or not callable(fn):
            continue
        try:
            fn()
            print(f"  PASS: {name}")
            passed += 1
        except Exception:
            print(f"  FAIL: {name}")
            traceback.print_exc()
            failed += 1
    print(f"\n{passed} passed, {failed} failed")
    return failed


if __name__ == "__main__":
    sys.exit(1 if _run_all() else 0)
