#!/usr/bin/env python3
"""
Early Warning System v1.0: district-level weather anomalies.

Combines the past 90 days of ERA5-Land observations and the next 16 days of
GFS forecast with a 10-year monthly baseline, producing three map layers
(past, forecast, combined) per district and answering point queries.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date

import config
from services.analysis import AnalysisService
from services.batch_scheduler import BatchScheduler
from services.climatology import BaselineStore
from services.logger import log_query, log_run
from services.report import format_run_summary, format_unit_report
from utils.aggregation_client import EarthEngineBackend
from utils.boundary_client import BoundaryClient, BoundaryLoadError

# ── Logging setup ─────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("district_ews")


def _print_banner(parameter: str, n_units: int) -> None:
    label = config.PARAMETER_LABELS[parameter]
    banner = f"""
╔{'═' * 38}╗
║  EARLY WARNING SYSTEM v1.0           ║
║  Past 90 days + 16-day forecast      ║
║  Districts: {n_units:<26d}║
║  Parameter: {label:<26s}║
╚{'═' * 38}╝"""
    print(banner)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="District-level weather anomaly early warning")
    parser.add_argument("--parameter", choices=config.PARAMETERS, default="precipitation")
    parser.add_argument("--start-date", type=date.fromisoformat, default=None,
                        help="forecast start date (YYYY-MM-DD, default today UTC)")
    parser.add_argument("--boundaries", default=config.BOUNDARY_SOURCE,
                        help="district GeoJSON path or URL")
    parser.add_argument("--baseline", default=config.BASELINE_CSV, help="baseline CSV path")
    parser.add_argument("--batch-size", type=_positive_int, default=config.BATCH_SIZE,
                        help="districts per backend request (>= 1)")
    parser.add_argument("--lon", type=float, help="query longitude")
    parser.add_argument("--lat", type=float, help="query latitude")
    return parser.parse_args(argv)


def _report_progress(batch_number: int, total: int) -> None:
    print(f"Processing districts: Batch {batch_number} of {total}...", flush=True)


# ── Main ──────────────────────────────────────────────────────────────────────


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    boundaries = BoundaryClient()
    try:
        units = await boundaries.load(args.boundaries)
    except BoundaryLoadError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        await boundaries.close()

    try:
        baselines = BaselineStore.from_csv(args.baseline)
    except OSError as exc:
        logger.error("Could not read baseline table %s: %s", args.baseline, exc)
        return 1

    _print_banner(args.parameter, len(units))

    service = AnalysisService(
        units,
        baselines,
        EarthEngineBackend(),
        scheduler=BatchScheduler(batch_size=args.batch_size),
    )
    run = await service.run(args.parameter, args.start_date, progress=_report_progress)
    if run is None:
        return 1

    log_run(run)
    print(format_run_summary(run))

    if args.lon is not None and args.lat is not None:
        response = service.query(args.lon, args.lat)
        log_query(args.lon, args.lat, response.status, response.result)
        print(format_unit_report(response, args.parameter))

    return 0 if run.has_data else 2


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown requested via Ctrl+C")
        sys.exit(0)


if __name__ == "__main__":
    cli()
