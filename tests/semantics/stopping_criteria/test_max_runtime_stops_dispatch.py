"""
Semantic test: runtime cap.

Invariant:
Once max_runtime_secs have elapsed no new build is dispatched. The cap
is cooperative: the build in flight when it elapses still finishes and
is recorded.
"""

from __future__ import annotations

import threading

from grid_orchestrator.core.domain.job_state_machine import JobState
from grid_orchestrator.search.grid_job import GridJob


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self._lock = threading.Lock()

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds

    def __call__(self) -> float:
        with self._lock:
            return self.now


def test_runtime_cap_stops_new_dispatches(make_builder) -> None:
    clock = FakeClock()
    builder = make_builder(on_build=lambda params: clock.advance(10.0))
    job = GridJob.from_raw(
        {
            "hyper_parameters": {"a": list(range(10))},
            "search_criteria": {"strategy": "RandomDiscrete", "max_runtime_secs": 25, "seed": 3},
        },
        builder,
        clock=clock,
    )

    status = job.start(wait=True).status()

    # Dispatches at t=0, 10 and 20; the check at t=30 stops the grid.
    assert status.state is JobState.DONE
    assert status.stop_reason == "max_runtime"
    assert len(builder.calls) == 3
    assert status.completed_count == 3
