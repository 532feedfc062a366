"""
Semantic test: domain event trace.

Invariant:
Every dispatched build is followed by exactly one completion event for
the same point, and the recorder writes one JSON line per event tagged
with its type.
"""

from __future__ import annotations

import json
import logging

from grid_orchestrator.core.events.event_bus import EventBus
from grid_orchestrator.core.events.events import JobStateTransitionEvent
from grid_orchestrator.core.events.sinks.file_recorder import FileRecorderSink
from grid_orchestrator.core.events.sinks.sink_logging import LoggingEventSink
from grid_orchestrator.search.grid_job import GridJob


def test_dispatch_and_completion_pair_up(make_builder, event_bus, event_sink) -> None:
    job = GridJob.from_raw(
        {"hyper_parameters": {"a": [1, 2, 3, 4]}, "parallelism": 2},
        make_builder(delay=0.002),
        event_bus=event_bus,
    )

    job.start(wait=True)

    dispatched = event_sink.of_type("BuildDispatchedEvent")
    completed = event_sink.of_type("BuildCompletedEvent")

    assert sorted(e.point_hash for e in dispatched) == sorted(e.point_hash for e in completed)
    assert len(dispatched) == 4
    assert all(1 <= e.in_flight <= e.degree == 2 for e in dispatched)
    assert [e.completed_count for e in completed] == [1, 2, 3, 4]


def test_recorder_writes_typed_json_lines(tmp_path, make_builder) -> None:
    path = tmp_path / "trace" / "events.jsonl"
    bus = EventBus([FileRecorderSink(path)])

    GridJob.from_raw({"hyper_parameters": {"a": [1, 2]}}, make_builder(), event_bus=bus).start(wait=True)
    bus.close()

    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    types = [r["type"] for r in records]

    assert types[0] == "JobStateTransitionEvent"
    assert types.count("BuildDispatchedEvent") == 2
    assert types.count("BuildCompletedEvent") == 2
    assert types[-1] == "GridStoppedEvent"
    assert records[-1]["stop_reason"] == "exhausted"

    # Closed buses drop further events.
    bus.emit(JobStateTransitionEvent(ts="t", grid_id="g", prev_state="QUEUED", next_state="DONE"))
    assert len(path.read_text(encoding="utf-8").splitlines()) == len(records)


def test_logging_sink_levels(caplog) -> None:
    sink = LoggingEventSink(logging.getLogger("grid_orchestrator.events"))

    with caplog.at_level(logging.DEBUG, logger="grid_orchestrator.events"):
        sink.on_event(JobStateTransitionEvent(ts="t", grid_id="g", prev_state="QUEUED", next_state="RUNNING"))

    assert caplog.records[-1].levelno == logging.INFO
    assert caplog.records[-1].event["next_state"] == "RUNNING"
