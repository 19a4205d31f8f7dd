from __future__ import annotations

import config
from services.analysis import AnalysisRun
from services.query_index import QueryResponse

_RULE = "━" * 28


def anomaly_status(value: float | None) -> str:
    """Above/below/at baseline label for one deviation."""
    if value is None:
        return ""
    if value > 0:
        return "Above Baseline"
    if value < 0:
        return "Below Baseline"
    return "At Baseline"


def _format_value(value: float | None, unit: str) -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f} {unit} ({anomaly_status(value)})"


def format_unit_report(response: QueryResponse, parameter: str) -> str:
    """Text shown for a clicked district."""
    if response.status == "miss":
        return "Click on a District\nClick on any district to see detailed anomaly information."
    name = response.unit.name if response.unit else "District"
    if response.result is None:
        return f"{name}\nNo data available for this district."

    unit = config.PARAMETER_UNITS[parameter]
    result = response.result
    lines = [name, _RULE]
    for layer in config.LAYERS:
        lines.append(f"{config.LAYER_TITLES[layer]}:")
        lines.append(f"   {_format_value(result.layer(layer), unit)}")
    lines.append(_RULE)
    return "\n".join(lines)


def format_run_summary(run: AnalysisRun) -> str:
    lines = [
        f"Early warning run #{run.generation}: {config.PARAMETER_LABELS[run.parameter]}",
        f"  Start date:      {run.start_date.isoformat()}",
        f"  Districts:       {len(run.results)} valid / {run.total_units} total",
        f"  No baseline:     {run.invalid_units}",
        f"  Failed batches:  {run.failed_batches} of {run.total_batches}",
    ]
    if not run.has_data:
        lines.append("  No valid data found.")
        return "\n".join(lines)
    for layer, scale in run.layers.items():
        lines.append(f"  {config.LAYER_TITLES[layer]:<28s} max |anomaly| {scale.max_abs:.2f} {run.unit}")
    return "\n".join(lines)
