"""
Batch scheduler: drives districts through the aggregation backend in
fixed-size slices, one slice in flight at a time.

The backend is rate limited, so each batch is awaited to completion (success
or failure) and followed by a short sleep before the next one is sent.
A failed batch is logged and skipped; it is not retried.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

import config

logger = logging.getLogger("district_ews.batch_scheduler")

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], Any]


class SchedulerState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"


def partition(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split *items* into ceil(N / batch_size) contiguous, ordered batches."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


@dataclass
class BatchState(Generic[T, R]):
    """Per-run scheduler state; discarded once the run is finalized."""

    batches: list[list[T]]
    state: SchedulerState = SchedulerState.PENDING
    batch_index: int = 0
    results: list[R] = field(default_factory=list)
    completed: int = 0
    failed: int = 0

    @property
    def total_batches(self) -> int:
        return len(self.batches)


class BatchScheduler(Generic[T, R]):
    """Sequential, throttled batch driver."""

    def __init__(
        self,
        batch_size: int = config.BATCH_SIZE,
        delay_seconds: float = config.BATCH_DELAY_SECONDS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._batch_size = batch_size
        self._delay = delay_seconds

    def plan(self, items: Sequence[T]) -> BatchState[T, R]:
        return BatchState(batches=partition(items, self._batch_size))

    async def run(
        self,
        items: Sequence[T],
        process: Callable[[list[T]], Awaitable[list[R]]],
        progress: ProgressCallback | None = None,
    ) -> BatchState[T, R]:
        """
        Process every batch in order and return the final state.

        ``state.results`` is the concatenation of the results of every
        successful batch, in input order.
        """
        state: BatchState[T, R] = self.plan(items)
        total = state.total_batches
        state.state = SchedulerState.RUNNING

        for index, batch in enumerate(state.batches):
            state.batch_index = index
            batch_number = index + 1
            logger.info("Processing districts: batch %d of %d (%d units)", batch_number, total, len(batch))
            if progress is not None:
                try:
                    progress(batch_number, total)
                except Exception as exc:
                    logger.error("Progress callback error: %s", exc)

            try:
                batch_results = await process(batch)
            except Exception as exc:
                state.failed += 1
                logger.error("Batch %d of %d failed, skipping: %s", batch_number, total, exc)
            else:
                state.results.extend(batch_results)
                state.completed += 1

            if batch_number < total and self._delay > 0:
                await asyncio.sleep(self._delay)

        state.state = SchedulerState.DONE
        logger.info(
            "Batch run complete: %d/%d batches succeeded, %d results",
            state.completed, total, len(state.results),
        )
        return state
