from __future__ import annotations

from dataclasses import dataclass

import config


@dataclass(frozen=True)
class AnomalyResult:
    """Past, forecast and combined deviation from baseline for one district.

    Values are in the physical unit of the analysed parameter (mm or °C).
    Invalid results carry ``config.INVALID_SENTINEL`` in every field; use
    ``valid`` rather than comparing values.
    """

    unit_id: str
    name: str
    past_diff: float
    forecast_diff: float
    combined_diff: float
    valid: bool = True

    @classmethod
    def invalid(cls, unit_id: str, name: str) -> AnomalyResult:
        sentinel = config.INVALID_SENTINEL
        return cls(unit_id, name, sentinel, sentinel, sentinel, valid=False)

    def layer(self, layer: str) -> float:
        if layer not in config.LAYERS:
            raise ValueError(f"Unknown layer: {layer!r}")
        return getattr(self, layer)

    def as_dict(self) -> dict[str, object]:
        return {
            "unit_id": self.unit_id,
            "name": self.name,
            "past_diff": self.past_diff,
            "forecast_diff": self.forecast_diff,
            "combined_diff": self.combined_diff,
            "valid": self.valid,
        }
