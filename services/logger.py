from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from models.anomaly import AnomalyResult
from services.analysis import AnalysisRun
from services.normalizer import color_for_index

logger = logging.getLogger("district_ews.logger")

_BASE_DIR = Path(__file__).resolve().parent.parent / "data" / "logs"


def _log_path(kind: str, ts: datetime) -> Path:
    """data/logs/<kind>/<UTC day of ts>.jsonl"""
    return _BASE_DIR / kind / f"{ts.astimezone(timezone.utc):%Y-%m-%d}.jsonl"


def _write_record(kind: str, ts: datetime, record: dict[str, Any]) -> Path | None:
    """Append one record to the day file of its own timestamp; None if it could not be written."""
    filepath = _log_path(kind, ts)
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "a", encoding="utf-8") as f:
            f.write(json.dumps({"timestamp": ts.isoformat(), **record}, default=str) + "\n")
    except OSError as exc:
        logger.error("Could not write %s log to %s: %s", kind, filepath, exc)
        return None
    return filepath


def _result_record(result: AnomalyResult, run: AnalysisRun) -> dict[str, Any]:
    record: dict[str, Any] = result.as_dict()
    for layer, scale in run.layers.items():
        index = scale.indices.get(result.unit_id)
        if index is not None:
            record[f"{layer}_index"] = round(index, 3)
            record[f"{layer}_color"] = color_for_index(index)
    return record


def log_run(run: AnalysisRun, timestamp: datetime | None = None) -> Path | None:
    """Log a finalized run summary and its per-district results to data/logs/runs/."""
    ts = timestamp or datetime.now(timezone.utc)
    record = {
        "generation": run.generation,
        "parameter": run.parameter,
        "unit": run.unit,
        "start_date": run.start_date.isoformat(),
        "total_units": run.total_units,
        "valid_units": len(run.results),
        "invalid_units": run.invalid_units,
        "failed_batches": run.failed_batches,
        "total_batches": run.total_batches,
        "max_abs": {layer: scale.max_abs for layer, scale in run.layers.items()},
        "results": [_result_record(r, run) for r in run.results],
    }
    return _write_record("runs", ts, record)


def log_query(
    lon: float, lat: float, status: str, result: AnomalyResult | None
) -> Path | None:
    record = {
        "lon": lon,
        "lat": lat,
        "status": status,
        "result": result.as_dict() if result else None,
    }
    return _write_record("queries", datetime.now(timezone.utc), record)
