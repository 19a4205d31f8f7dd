from __future__ import annotations

from dataclasses import dataclass


@dataclass
class HistoricalBaseline:
    """Long-term monthly normals for one district (index 0 = January)."""

    name: str
    precipitation: list[float]  # monthly totals, mm
    temperature: list[float]  # monthly means, °C

    def __post_init__(self) -> None:
        for label, values in (("precipitation", self.precipitation), ("temperature", self.temperature)):
            if len(values) != 12:
                raise ValueError(f"{self.name}: expected 12 monthly {label} values, got {len(values)}")

    def monthly(self, parameter: str) -> list[float]:
        if parameter == "precipitation":
            return self.precipitation
        if parameter == "temperature":
            return self.temperature
        raise ValueError(f"Unknown parameter: {parameter!r}")

    def value_for_month(self, parameter: str, month: int) -> float:
        """Baseline for a 1-based calendar month."""
        return self.monthly(parameter)[month - 1]
