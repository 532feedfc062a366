"""
Grid job: top-level orchestration of one grid search.

A job owns the space, the walker, the scheduler, the recovery store and the
resulting grid. It runs the scheduler on a background thread and exposes a
thread-safe status snapshot.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from grid_orchestrator.core.config.grid_request import GridSearchRequest, new_grid_id
from grid_orchestrator.core.config.search_criteria import RandomDiscreteCriteria, resolve_seed
from grid_orchestrator.core.domain.errors import (
    AlreadyStartedError,
    GridSearchError,
    InvalidJobTransitionError,
    JobNotFinishedError,
)
from grid_orchestrator.core.domain.grid import Grid
from grid_orchestrator.core.domain.job_state_machine import (
    JobState,
    is_terminal_state,
    require_transition,
)
from grid_orchestrator.core.events.event_bus import EventBus
from grid_orchestrator.core.events.events import GridStoppedEvent, JobStateTransitionEvent
from grid_orchestrator.core.events.sinks.null_event_bus import NullEventBus
from grid_orchestrator.core.ports.model_builder import ModelBuilder
from grid_orchestrator.search.capacity import ParallelismPolicy, policy_for
from grid_orchestrator.search.early_stopping import early_stopping_for
from grid_orchestrator.search.recovery import RecoveryManifest, open_recovery_store
from grid_orchestrator.search.scheduler import BuildScheduler, StopReason
from grid_orchestrator.search.walkers import make_walker

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JobStatus:
    """Point-in-time snapshot of a grid job."""

    grid_id: str
    state: JobState

    # None while the total is unknown (unbounded random search)
    total_models: int | None
    completed_count: int
    failed_count: int
    in_flight_count: int
    recovered_count: int

    started_at: datetime | None
    finished_at: datetime | None

    stop_reason: str | None
    error: str | None

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)

    @property
    def progress(self) -> float | None:
        if not self.total_models:
            return None
        return min(1.0, self.completed_count / self.total_models)


class GridJob:
    """
    Runs one grid search.

    Usage:
        job = GridJob.from_raw(
            {"hyper_parameters": {"ntrees": [10, 50], "max_depth": [3, 5]}},
            builder=my_builder,
        )
        job.start()
        status = job.join()
        grid = job.result()

    The recovery directory (if any) is opened when the job is created, so a
    mismatched or unusable directory is reported before anything starts.
    """

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self,
        request: GridSearchRequest,
        builder: ModelBuilder,
        *,
        event_bus: EventBus | None = None,
        adaptive_policy: ParallelismPolicy | None = None,
        reset_failed: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._request = request
        self._builder = builder
        self._event_bus = event_bus if event_bus is not None else NullEventBus()
        self._reset_failed = reset_failed
        self._clock = clock

        self._space = request.space()
        self._criteria = request.search_criteria
        self._policy = policy_for(request.parallelism_directive(), adaptive_policy)

        self._recovery = open_recovery_store(request.recovery_dir)
        manifest = self._recovery.open(
            RecoveryManifest(
                grid_id=request.grid_id or new_grid_id(),
                seed=resolve_seed(self._criteria),
                fingerprint=request.fingerprint(),
            ),
            explicit_grid_id=request.grid_id is not None,
        )
        self._grid_id = manifest.grid_id
        self._seed = manifest.seed

        self._grid = Grid(self._grid_id)
        self._total_models = self._planned_total()

        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._scheduler: BuildScheduler | None = None

        self._state = JobState.QUEUED
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._stop_reason: str | None = None
        self._error: str | None = None
        self._recovered = 0

    @classmethod
    def from_raw(cls, raw: Any, builder: ModelBuilder, **kwargs: Any) -> GridJob:
        """Validate a raw request and create the job. Raises on invalid input."""
        return cls(GridSearchRequest.from_raw(raw), builder, **kwargs)

    @property
    def grid_id(self) -> str:
        return self._grid_id

    @property
    def total_models(self) -> int | None:
        return self._total_models

    @property
    def seed(self) -> int | None:
        return self._seed

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start(self, *, wait: bool = False) -> GridJob:
        with self._lock:
            if self._thread is not None:
                raise AlreadyStartedError(f"grid job {self._grid_id} was already started")
            if self._state is not JobState.QUEUED:
                raise InvalidJobTransitionError(
                    f"grid job {self._grid_id} is {self._state.value} and cannot start"
                )
            self._started_at = datetime.now(timezone.utc)
            self._thread = threading.Thread(
                target=self._run,
                name=f"{self._grid_id}-job",
                daemon=True,
            )

        LOGGER.info(
            "Starting grid job",
            extra={
                "grid_id": self._grid_id,
                "strategy": self._criteria.strategy,
                "total_models": self._total_models,
                "parallelism": self._request.parallelism,
                "recovery_dir": str(self._request.recovery_dir) if self._request.recovery_dir else None,
            },
        )
        self._thread.start()

        if wait:
            self.join()
        return self

    def join(self, timeout: float | None = None) -> JobStatus:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.status()

    def cancel(self) -> None:
        """Stop dispatching new builds. In-flight builds finish and are recorded."""
        self._cancel_event.set()

        # Decided and applied under the lock that start() checks, so a
        # concurrent start() either runs first or sees CANCELLED.
        with self._lock:
            not_started = self._thread is None and self._state is JobState.QUEUED
            if not_started:
                self._set_finished(JobState.CANCELLED, stop_reason=StopReason.CANCELLED.value)
        if not_started:
            self._announce_finish(JobState.QUEUED, JobState.CANCELLED)

        LOGGER.info("Grid job cancellation requested", extra={"grid_id": self._grid_id})

    def status(self) -> JobStatus:
        with self._lock:
            scheduler = self._scheduler
            return JobStatus(
                grid_id=self._grid_id,
                state=self._state,
                total_models=self._total_models,
                completed_count=len(self._grid),
                failed_count=self._grid.failure_count,
                in_flight_count=scheduler.in_flight_count if scheduler is not None else 0,
                recovered_count=self._recovered,
                started_at=self._started_at,
                finished_at=self._finished_at,
                stop_reason=self._stop_reason,
                error=self._error,
            )

    def result(self) -> Grid:
        """Return the grid once the job is DONE, CANCELLED (partial) or FAILED (partial)."""
        with self._lock:
            state = self._state
        if not is_terminal_state(state):
            raise JobNotFinishedError(
                f"grid job {self._grid_id} is {state.value}; the grid is not final yet"
            )
        return self._grid

    # ------------------------------------------------------------------
    # Job thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            scheduler = self._prepare()
            reason = scheduler.run()
        except GridSearchError as exc:
            LOGGER.error(
                "Grid job failed",
                extra={"grid_id": self._grid_id, "error": str(exc)},
            )
            self._finish(JobState.FAILED, error=str(exc))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Unexpected grid orchestration error", extra={"grid_id": self._grid_id})
            self._finish(JobState.FAILED, error=f"{type(exc).__name__}: {exc}")
        else:
            if self._total_models is None:
                self._total_models = len(self._grid)
            next_state = JobState.CANCELLED if reason is StopReason.CANCELLED else JobState.DONE
            self._finish(next_state, stop_reason=reason.value)
        finally:
            self._recovery.close()

    def _prepare(self) -> BuildScheduler:
        state = self._recovery.replay(reset_failed=self._reset_failed)
        early_stopping = early_stopping_for(self._criteria)

        for record in state.completed:
            outcome = record.outcome.to_outcome()
            self._grid.record(record.to_point(), outcome)
            if early_stopping is not None:
                early_stopping.observe(outcome)
        self._recovered = len(state.completed)

        walker = make_walker(self._space, self._criteria, seed=self._seed)
        if state.cursor is not None:
            walker.resume(state.cursor)

        if not state.is_empty:
            LOGGER.info(
                "Recovered grid state",
                extra={
                    "grid_id": self._grid_id,
                    "recovered": self._recovered,
                    "pending": len(state.pending),
                    "cursor": state.cursor.position if state.cursor else None,
                },
            )

        max_runtime = (
            self._criteria.max_runtime_secs
            if isinstance(self._criteria, RandomDiscreteCriteria)
            else 0.0
        )

        scheduler = BuildScheduler(
            grid_id=self._grid_id,
            walker=walker,
            builder=self._builder,
            grid=self._grid,
            recovery=self._recovery,
            policy=self._policy,
            event_bus=self._event_bus,
            cancel_event=self._cancel_event,
            base_params=self._request.parameters,
            max_runtime_secs=max_runtime,
            early_stopping=early_stopping,
            pending=state.pending,
            clock=self._clock,
            on_first_dispatch=self._on_first_dispatch,
        )
        with self._lock:
            self._scheduler = scheduler
        return scheduler

    def _on_first_dispatch(self) -> None:
        self._transition(JobState.RUNNING)

    def _planned_total(self) -> int | None:
        count = self._space.expansion_count()
        if isinstance(self._criteria, RandomDiscreteCriteria):
            if self._criteria.max_models > 0:
                return min(self._criteria.max_models, count)
            return None
        return count

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _transition(self, next_state: JobState) -> None:
        with self._lock:
            prev_state = self._set_state(next_state)
        self._emit_transition(prev_state, next_state)

    def _set_state(self, next_state: JobState) -> JobState:
        """Apply a transition. The caller holds ``self._lock``."""
        prev_state = self._state
        require_transition(prev_state, next_state)
        self._state = next_state
        return prev_state

    def _emit_transition(self, prev_state: JobState, next_state: JobState) -> None:
        self._event_bus.emit(
            JobStateTransitionEvent(
                ts=datetime.now(timezone.utc).isoformat(),
                grid_id=self._grid_id,
                prev_state=prev_state.value,
                next_state=next_state.value,
            )
        )

    def _finish(
        self,
        next_state: JobState,
        *,
        stop_reason: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            prev_state = self._set_finished(next_state, stop_reason=stop_reason, error=error)
        self._announce_finish(prev_state, next_state)

    def _set_finished(
        self,
        next_state: JobState,
        *,
        stop_reason: str | None = None,
        error: str | None = None,
    ) -> JobState:
        """Move to a terminal state. The caller holds ``self._lock``."""
        prev_state = self._set_state(next_state)
        self._finished_at = datetime.now(timezone.utc)
        self._stop_reason = stop_reason
        self._error = error
        return prev_state

    def _announce_finish(self, prev_state: JobState, next_state: JobState) -> None:
        self._emit_transition(prev_state, next_state)

        assert self._finished_at is not None
        self._event_bus.emit(
            GridStoppedEvent(
                ts=self._finished_at.isoformat(),
                grid_id=self._grid_id,
                stop_reason=self._stop_reason or next_state.value.lower(),
                completed_count=len(self._grid),
                failed_count=self._grid.failure_count,
            )
        )

        LOGGER.info(
            "Grid job finished",
            extra={
                "grid_id": self._grid_id,
                "state": next_state.value,
                "stop_reason": self._stop_reason,
                "completed": len(self._grid),
                "failed": self._grid.failure_count,
            },
        )
