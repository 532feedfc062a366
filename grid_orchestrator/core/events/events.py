"""
Domain event models.

These events represent immutable facts observed while a grid search runs.
They are consumed by loggers, recorders, and monitoring pipelines.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class JobStateTransitionEvent:
    ts: str
    grid_id: str
    prev_state: str
    next_state: str


@dataclass(slots=True)
class BuildDispatchedEvent:
    ts: str
    grid_id: str
    point_hash: str
    params: dict[str, object]

    in_flight: int
    degree: int


@dataclass(slots=True)
class BuildCompletedEvent:
    ts: str
    grid_id: str
    point_hash: str

    status: str
    model_id: str | None
    error: str | None

    duration_seconds: float
    completed_count: int


@dataclass(slots=True)
class GridStoppedEvent:
    ts: str
    grid_id: str

    stop_reason: str
    completed_count: int
    failed_count: int
