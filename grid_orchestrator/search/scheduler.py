"""
Parallel build scheduler.

The scheduler pulls points from a walker and keeps up to the parallelism
degree of builds in flight on a thread pool.

Invariant:
- Only the dispatch loop (the thread calling ``run``) advances the walker,
  writes the grid and appends to the recovery store. Worker threads only run
  ``builder.build`` and return an owned ``ModelOutcome``.

Stop conditions (cancellation, runtime cap, early stopping) are checked
before each new dispatch. Builds already in flight always run to completion
and are recorded.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from grid_orchestrator.core.domain.errors import RecoveryIOError
from grid_orchestrator.core.domain.grid import Grid, ModelOutcome
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.core.events.event_bus import EventBus
from grid_orchestrator.core.events.events import BuildCompletedEvent, BuildDispatchedEvent
from grid_orchestrator.core.ports.model_builder import BuildResult, ModelBuilder
from grid_orchestrator.search.capacity import ParallelismPolicy
from grid_orchestrator.search.checkpoint import CheckpointRecord
from grid_orchestrator.search.early_stopping import EarlyStopping
from grid_orchestrator.search.recovery import RecoveryStore
from grid_orchestrator.search.walkers import SpaceWalker

LOGGER = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 10


class StopReason(str, Enum):
    EXHAUSTED = "exhausted"
    MAX_MODELS = "max_models"
    MAX_RUNTIME = "max_runtime"
    EARLY_STOPPING = "early_stopping"
    CANCELLED = "cancelled"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BuildScheduler:
    """Runs build tasks for walker points with bounded concurrency."""

    # pylint: disable=too-many-instance-attributes,too-many-arguments

    def __init__(
        self,
        *,
        grid_id: str,
        walker: SpaceWalker,
        builder: ModelBuilder,
        grid: Grid,
        recovery: RecoveryStore,
        policy: ParallelismPolicy,
        event_bus: EventBus,
        cancel_event: threading.Event,
        base_params: Mapping[str, Any] | None = None,
        max_runtime_secs: float = 0.0,
        early_stopping: EarlyStopping | None = None,
        pending: Iterable[ParameterPoint] = (),
        clock: Callable[[], float] = time.monotonic,
        started_at: float | None = None,
        on_first_dispatch: Callable[[], None] | None = None,
    ) -> None:
        self._grid_id = grid_id
        self._walker = walker
        self._builder = builder
        self._grid = grid
        self._recovery = recovery
        self._policy = policy
        self._event_bus = event_bus
        self._cancel_event = cancel_event
        self._base_params = dict(base_params or {})
        self._max_runtime_secs = max_runtime_secs
        self._early_stopping = early_stopping
        self._pending: deque[ParameterPoint] = deque(pending)
        self._clock = clock
        self._started_at = started_at
        self._on_first_dispatch = on_first_dispatch

        self._in_flight: dict[Future[ModelOutcome], ParameterPoint] = {}
        self._in_flight_hashes: set[str] = set()
        self._dispatched = 0
        self._skipped = 0
        self._completed_this_run = 0

    # ------------------------------------------------------------------
    # Progress (read from other threads, single writer)
    # ------------------------------------------------------------------

    @property
    def dispatched_count(self) -> int:
        return self._dispatched

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight_hashes)

    @property
    def skipped_count(self) -> int:
        return self._skipped

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> StopReason:
        """Dispatch until a stop condition fires and nothing is in flight.

        Raises ``RecoveryIOError`` after draining in-flight builds if a
        checkpoint could not be written. Any other error raised while
        dispatching is raised after the drain as well, once the builds in
        flight are recorded.
        """
        if self._started_at is None:
            self._started_at = self._clock()

        stop_reason: StopReason | None = None
        fatal: Exception | None = None
        # Cleared once the recovery store failed; the grid is still written.
        checkpointing = True

        with ThreadPoolExecutor(
            max_workers=self._policy.max_degree,
            thread_name_prefix=f"{self._grid_id}-build",
        ) as pool:
            while True:
                if stop_reason is None and fatal is None:
                    try:
                        stop_reason = self._fill(pool)
                    except RecoveryIOError as exc:
                        LOGGER.error(
                            "Checkpoint write failed, no further dispatch",
                            extra={"grid_id": self._grid_id, "error": str(exc)},
                        )
                        fatal = exc
                        checkpointing = False
                    except Exception as exc:  # pylint: disable=broad-exception-caught
                        LOGGER.error(
                            "Dispatch failed, draining in-flight builds",
                            extra={"grid_id": self._grid_id, "error": repr(exc)},
                        )
                        fatal = exc

                if not self._in_flight:
                    break

                done, _ = wait(list(self._in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    point = self._in_flight.pop(future)
                    self._in_flight_hashes.discard(point.hash)
                    outcome = future.result()
                    try:
                        self._complete(point, outcome, checkpoint=checkpointing)
                    except RecoveryIOError as exc:
                        checkpointing = False
                        if fatal is None:
                            LOGGER.error(
                                "Checkpoint write failed, no further dispatch",
                                extra={"grid_id": self._grid_id, "error": str(exc)},
                            )
                            fatal = exc

        if fatal is not None:
            raise fatal

        assert stop_reason is not None
        LOGGER.info(
            "Grid scheduler stopped",
            extra={
                "grid_id": self._grid_id,
                "stop_reason": stop_reason.value,
                "dispatched": self._dispatched,
                "skipped": self._skipped,
                "completed": len(self._grid),
            },
        )
        return stop_reason

    def _fill(self, pool: ThreadPoolExecutor) -> StopReason | None:
        """Dispatch until the degree is reached. Returns a reason to stop, if any."""
        degree = self._policy.degree(self._builder)

        while len(self._in_flight) < degree:
            reason = self._stop_condition()
            if reason is not None:
                return reason

            point = self._next_point()
            if point is None:
                return self._exhausted_reason()

            if self._grid.has_outcome(point.hash) or point.hash in self._in_flight_hashes:
                self._skipped += 1
                LOGGER.debug(
                    "Skipping point with a recorded outcome",
                    extra={"grid_id": self._grid_id, "point_hash": point.hash},
                )
                continue

            self._dispatch(pool, point, degree)

        return None

    def _stop_condition(self) -> StopReason | None:
        if self._cancel_event.is_set():
            return StopReason.CANCELLED

        if self._max_runtime_secs > 0:
            assert self._started_at is not None
            if self._clock() - self._started_at >= self._max_runtime_secs:
                return StopReason.MAX_RUNTIME

        if self._early_stopping is not None and self._early_stopping.should_stop():
            return StopReason.EARLY_STOPPING

        return None

    def _next_point(self) -> ParameterPoint | None:
        # Points dispatched before a crash without an outcome come first.
        if self._pending:
            return self._pending.popleft()
        return self._walker.next_point()

    def _exhausted_reason(self) -> StopReason:
        if self._walker.planned_count() < self._walker.space.expansion_count():
            return StopReason.MAX_MODELS
        return StopReason.EXHAUSTED

    def _dispatch(self, pool: ThreadPoolExecutor, point: ParameterPoint, degree: int) -> None:
        # The dispatch record must be durable before the build starts.
        self._recovery.append(
            CheckpointRecord.dispatched(
                grid_id=self._grid_id,
                point=point,
                cursor=self._walker.cursor(),
            )
        )

        if self._dispatched == 0 and self._on_first_dispatch is not None:
            self._on_first_dispatch()

        self._in_flight_hashes.add(point.hash)
        future = pool.submit(self._build, point)
        self._in_flight[future] = point
        self._dispatched += 1

        self._event_bus.emit(
            BuildDispatchedEvent(
                ts=_now_iso(),
                grid_id=self._grid_id,
                point_hash=point.hash,
                params=point.as_dict(),
                in_flight=len(self._in_flight),
                degree=degree,
            )
        )

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _build(self, point: ParameterPoint) -> ModelOutcome:
        """Run one build. Never raises: failures become failed outcomes."""
        params = {**self._base_params, **point.as_dict()}
        started = time.perf_counter()

        try:
            result = self._builder.build(params)
            if isinstance(result, str):
                result = BuildResult(model_id=result)
            if not isinstance(result, BuildResult):
                raise TypeError(
                    f"builder returned {type(result).__name__}, expected BuildResult"
                )
            metrics = self._finite_metrics(result.metrics, params)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Grid search is tolerant of bad hyperparameter combinations.
            LOGGER.warning(
                "Model build failed",
                extra={"grid_id": self._grid_id, "params": params, "error": repr(exc)},
            )
            return ModelOutcome.failure(exc, time.perf_counter() - started)

        return ModelOutcome.success(
            result.model_id,
            metrics,
            time.perf_counter() - started,
        )

    def _finite_metrics(self, metrics: Mapping[str, float], params: Mapping[str, Any]) -> dict[str, float]:
        """Drop NaN and infinite metrics; they have no JSON checkpoint form."""
        finite: dict[str, float] = {}
        dropped: list[str] = []
        for name, value in metrics.items():
            if math.isfinite(value):
                finite[name] = value
            else:
                dropped.append(name)

        if dropped:
            LOGGER.warning(
                "Dropping non-finite model metrics",
                extra={"grid_id": self._grid_id, "params": dict(params), "metrics": dropped},
            )
        return finite

    # ------------------------------------------------------------------
    # Completion (dispatch thread only)
    # ------------------------------------------------------------------

    def _complete(self, point: ParameterPoint, outcome: ModelOutcome, *, checkpoint: bool) -> None:
        self._grid.record(point, outcome)
        self._completed_this_run += 1

        if self._early_stopping is not None:
            self._early_stopping.observe(outcome)

        self._event_bus.emit(
            BuildCompletedEvent(
                ts=_now_iso(),
                grid_id=self._grid_id,
                point_hash=point.hash,
                status=outcome.status,
                model_id=outcome.model_id,
                error=outcome.error.message if outcome.error else None,
                duration_seconds=outcome.duration_seconds,
                completed_count=len(self._grid),
            )
        )

        if self._completed_this_run % PROGRESS_LOG_EVERY == 0:
            LOGGER.info(
                "Grid progress",
                extra={
                    "grid_id": self._grid_id,
                    "completed": len(self._grid),
                    "failed": self._grid.failure_count,
                    "in_flight": len(self._in_flight),
                },
            )

        if checkpoint:
            self._recovery.append(
                CheckpointRecord.completed(
                    grid_id=self._grid_id,
                    point=point,
                    cursor=self._walker.cursor(),
                    outcome=outcome,
                )
            )
