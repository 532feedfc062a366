"""
Semantic test: non-finite build metrics.

Invariant:
A build that reports a NaN or infinite metric is recorded without that
metric, so its checkpoint stays valid JSON and a resume of the same
recovery_dir reproduces the grid without building anything again.
"""

from __future__ import annotations

import logging

from grid_orchestrator.core.domain.job_state_machine import JobState
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.search.grid_job import GridJob


def _diverging_metrics(params) -> dict[str, float]:
    x = params["x"]
    return {
        "logloss": float("nan") if x == 2 else 0.5 / x,
        "auc": float("inf") if x == 3 else 0.7,
    }


def test_non_finite_metrics_are_dropped_and_resume_succeeds(tmp_path, make_builder, caplog) -> None:
    raw = {"hyper_parameters": {"x": [1, 2, 3]}, "recovery_dir": str(tmp_path / "rec")}

    with caplog.at_level(logging.WARNING, logger="grid_orchestrator.search.scheduler"):
        first = GridJob.from_raw(raw, make_builder(metrics=_diverging_metrics))
        assert first.start(wait=True).status().state is JobState.DONE

    assert caplog.messages.count("Dropping non-finite model metrics") == 2

    grid = first.result()
    assert grid.get(ParameterPoint.from_mapping({"x": 1})).metrics == {"logloss": 0.5, "auc": 0.7}
    assert grid.get(ParameterPoint.from_mapping({"x": 2})).metrics == {"auc": 0.7}
    assert grid.get(ParameterPoint.from_mapping({"x": 3})).metrics == {"logloss": 0.5 / 3}
    # Diverged models still count as built and can still be ranked on what they reported.
    assert grid.success_count == 3
    assert [e.point["x"] for e in grid.sorted_by_metric("logloss")] == [3, 1]

    builder = make_builder()
    resumed = GridJob.from_raw(raw, builder)
    status = resumed.start(wait=True).status()

    assert status.state is JobState.DONE
    assert status.recovered_count == 3
    assert builder.calls == []
    assert {e.point.hash: e.outcome.metrics for e in resumed.result()} == {
        e.point.hash: e.outcome.metrics for e in grid
    }
