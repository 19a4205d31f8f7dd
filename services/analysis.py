"""
Analysis service: one early-warning run from districts to map layers.

Replaces shared panel state with an explicit AnalysisRun.  Each run takes a
generation token when it starts and is committed only if no newer run has
started in the meantime; a superseded run's results are dropped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import config
from models.anomaly import AnomalyResult
from models.unit import SpatialUnit
from services.anomaly_engine import compute_unit_anomaly
from services.batch_scheduler import BatchScheduler, ProgressCallback
from services.climatology import BaselineStore
from services.normalizer import LayerScale, normalize_layers
from services.query_index import MISS, QueryResponse, SpatialQueryIndex
from utils.aggregation_client import AggregationBackend

logger = logging.getLogger("district_ews.analysis")


@dataclass
class AnalysisRun:
    """Finalized, read-only output of one run."""

    generation: int
    parameter: str
    start_date: date
    results: list[AnomalyResult] = field(default_factory=list)  # valid only
    layers: dict[str, LayerScale] = field(default_factory=dict)
    total_units: int = 0
    invalid_units: int = 0
    failed_batches: int = 0
    total_batches: int = 0
    index: SpatialQueryIndex | None = field(default=None, repr=False)

    @property
    def has_data(self) -> bool:
        return bool(self.results)

    @property
    def unit(self) -> str:
        return config.PARAMETER_UNITS[self.parameter]


class AnalysisService:
    def __init__(
        self,
        units: list[SpatialUnit],
        baselines: BaselineStore,
        backend: AggregationBackend,
        scheduler: BatchScheduler | None = None,
    ) -> None:
        self._units = list(units)
        self._baselines = baselines
        self._backend = backend
        self._scheduler = scheduler or BatchScheduler()
        self._generation = 0
        self.current: AnalysisRun | None = None

    @property
    def generation(self) -> int:
        return self._generation

    async def run(
        self,
        parameter: str,
        start_date: date | None = None,
        progress: ProgressCallback | None = None,
    ) -> AnalysisRun | None:
        """Compute every district's anomaly; None if superseded by a newer run."""
        if parameter not in config.PARAMETERS:
            raise ValueError(f"Unknown parameter: {parameter!r}")
        start = start_date or datetime.now(timezone.utc).date()

        self._generation += 1
        token = self._generation
        logger.info(
            "Run %d: %s anomalies for %d districts from %s",
            token, parameter, len(self._units), start.isoformat(),
        )

        async def process(batch: list[SpatialUnit]) -> list[AnomalyResult]:
            samples = await self._backend.fetch_batch(batch, parameter, start)
            return [
                compute_unit_anomaly(unit, samples.get(unit.unit_id), self._baselines, parameter, start)
                for unit in batch
            ]

        state = await self._scheduler.run(self._units, process, progress)

        if token != self._generation:
            logger.warning("Run %d superseded by run %d, results discarded", token, self._generation)
            return None

        valid = [r for r in state.results if r.valid]
        run = AnalysisRun(
            generation=token,
            parameter=parameter,
            start_date=start,
            results=valid,
            total_units=len(self._units),
            invalid_units=len(state.results) - len(valid),
            failed_batches=state.failed,
            total_batches=state.total_batches,
        )
        if run.invalid_units:
            logger.info("Run %d: %d districts without baseline excluded", token, run.invalid_units)

        if valid:
            run.layers = normalize_layers(valid)
        else:
            logger.warning("Run %d: no valid data found", token)
        run.index = SpatialQueryIndex(self._units, valid)

        self.current = run
        return run

    def query(self, lon: float, lat: float) -> QueryResponse:
        if self.current is None or self.current.index is None:
            return MISS
        return self.current.index.query(lon, lat)
