from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

import config
from models.anomaly import AnomalyResult


@dataclass
class LayerScale:
    """Symmetric colour scaling for one anomaly layer."""

    layer: str
    max_abs: float
    indices: dict[str, float] = field(default_factory=dict)  # unit_id -> 0..6


def max_abs(values: list[float]) -> float:
    """Largest magnitude, or 1.0 when every value is zero (or none given)."""
    if not values:
        return 1.0
    peak = float(np.max(np.abs(values)))
    return peak if peak != 0 else 1.0


def color_indices(values: list[float], scale: float) -> list[float]:
    """Map values onto the 7-step diverging palette: 0 low, 3 baseline, 6 high."""
    arr = np.asarray(values, dtype=np.float64)
    idx = ((arr / scale) + 1.0) / 2.0 * config.MAX_COLOR_INDEX
    return np.clip(idx, 0, config.MAX_COLOR_INDEX).tolist()


def normalize_layer(results: list[AnomalyResult], layer: str) -> LayerScale:
    valid = [r for r in results if r.valid]
    values = [r.layer(layer) for r in valid]
    scale = max_abs(values)
    indices = color_indices(values, scale)
    return LayerScale(
        layer=layer,
        max_abs=scale,
        indices={r.unit_id: i for r, i in zip(valid, indices)},
    )


def normalize_layers(results: list[AnomalyResult]) -> dict[str, LayerScale]:
    return {layer: normalize_layer(results, layer) for layer in config.LAYERS}


def color_for_index(index: float) -> str:
    clamped = min(max(index, 0), config.MAX_COLOR_INDEX)
    return config.PALETTE[int(round(clamped))]
