"""
Semantic test: crash and resume.

Invariant:
A grid interrupted by a crash and resumed from the same recovery_dir
ends with exactly the grid of an uninterrupted run. Points whose outcome
was checkpointed are never built again; points dispatched without a
durable outcome are built again first.

The crash is simulated by a checkpoint append that tears its line and
fails, which is what a process dying mid-write leaves on disk.
"""

from __future__ import annotations

import pytest

from grid_orchestrator.core.domain.errors import RecoveryIOError
from grid_orchestrator.core.domain.job_state_machine import JobState
from grid_orchestrator.search.grid_job import GridJob
from grid_orchestrator.search.recovery import CHECKPOINT_FILE, FileRecoveryStore

SPACE = {"ntrees": [10, 50, 100], "max_depth": [3, 5, 7]}


def _crash_on_append(monkeypatch, crash_at: int) -> None:
    original_append = FileRecoveryStore.append
    appended: list = []

    def append(self, record) -> None:
        appended.append(record)
        if len(appended) == crash_at:
            with (self.recovery_dir / CHECKPOINT_FILE).open("a", encoding="utf-8") as fh:
                fh.write(record.model_dump_json()[:25])
            raise RecoveryIOError("simulated crash")
        original_append(self, record)

    monkeypatch.setattr(FileRecoveryStore, "append", append)


def test_cartesian_resume_matches_uninterrupted_run(tmp_path, monkeypatch, make_builder) -> None:
    raw = {"hyper_parameters": SPACE, "grid_id": "grid_resume", "recovery_dir": str(tmp_path / "rec")}

    reference = GridJob.from_raw({"hyper_parameters": SPACE}, make_builder())
    reference.start(wait=True)

    # Records: d0 c0 d1 c1 d2 c2 d3 c3 d4 are durable, c4 is torn.
    _crash_on_append(monkeypatch, crash_at=10)
    first_builder = make_builder()
    crashed = GridJob.from_raw(raw, first_builder)
    crashed_status = crashed.start(wait=True).status()

    assert crashed_status.state is JobState.FAILED
    assert "simulated crash" in crashed_status.error
    assert len(first_builder.calls) == 5

    monkeypatch.undo()
    second_builder = make_builder()
    resumed = GridJob.from_raw(raw, second_builder)
    resumed_status = resumed.start(wait=True).status()

    assert resumed_status.state is JobState.DONE
    assert resumed_status.recovered_count == 4
    # The point whose outcome was lost is rebuilt first, then the walk continues.
    assert second_builder.calls == [
        {"ntrees": 50, "max_depth": 5},
        {"ntrees": 50, "max_depth": 7},
        {"ntrees": 100, "max_depth": 3},
        {"ntrees": 100, "max_depth": 5},
        {"ntrees": 100, "max_depth": 7},
    ]
    assert first_builder.calls[4] == second_builder.calls[0]
    assert resumed.result().as_model_map() == reference.result().as_model_map()


@pytest.mark.parametrize("crash_at", [3, 6, 9])
def test_random_parallel_resume_matches_uninterrupted_run(
    tmp_path, monkeypatch, make_builder, crash_at
) -> None:
    raw = {
        "hyper_parameters": SPACE,
        "search_criteria": {"strategy": "RandomDiscrete", "max_models": 6, "seed": 2024},
        "parallelism": 3,
        "grid_id": "grid_random_resume",
        "recovery_dir": str(tmp_path / "rec"),
    }

    reference = GridJob.from_raw({k: v for k, v in raw.items() if k != "recovery_dir"}, make_builder())
    reference.start(wait=True)

    _crash_on_append(monkeypatch, crash_at=crash_at)
    crashed = GridJob.from_raw(raw, make_builder(delay=0.002))
    assert crashed.start(wait=True).status().state is JobState.FAILED

    monkeypatch.undo()
    second_builder = make_builder()
    resumed = GridJob.from_raw(raw, second_builder)
    status = resumed.start(wait=True).status()

    assert status.state is JobState.DONE
    assert len(second_builder.calls) == 6 - status.recovered_count
    assert resumed.result().as_model_map() == reference.result().as_model_map()


def test_resume_of_a_finished_grid_builds_nothing(tmp_path, make_builder, event_bus, event_sink) -> None:
    raw = {"hyper_parameters": SPACE, "recovery_dir": str(tmp_path / "rec")}

    first = GridJob.from_raw(raw, make_builder())
    first.start(wait=True)

    builder = make_builder()
    again = GridJob.from_raw(raw, builder, event_bus=event_bus)
    status = again.start(wait=True).status()

    # The grid id is adopted from the recovery dir.
    assert again.grid_id == first.grid_id
    assert builder.calls == []
    assert status.state is JobState.DONE
    assert status.recovered_count == 9
    assert [(e.prev_state, e.next_state) for e in event_sink.of_type("JobStateTransitionEvent")] == [
        ("QUEUED", "DONE")
    ]
