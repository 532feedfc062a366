"""Shared builders for grid search semantic tests."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Mapping

import pytest

from grid_orchestrator.core.events.event_bus import EventBus
from grid_orchestrator.core.ports.model_builder import BuildResult


def model_id_for(params: Mapping[str, Any]) -> str:
    """Deterministic model id, so grids of separate runs can be compared."""
    return "model__" + "__".join(f"{k}={params[k]!r}" for k in sorted(params))


class RecordingBuilder:
    """Model builder that records every call and the peak concurrency."""

    def __init__(
        self,
        *,
        fail_when: Callable[[Mapping[str, Any]], bool] | None = None,
        metrics: Callable[[Mapping[str, Any]], dict[str, float]] | None = None,
        delay: float = 0.0,
        on_build: Callable[[Mapping[str, Any]], None] | None = None,
    ) -> None:
        self.calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._fail_when = fail_when
        self._metrics = metrics
        self._delay = delay
        self._on_build = on_build
        self._lock = threading.Lock()

    def build(self, params: Mapping[str, Any]) -> BuildResult:
        with self._lock:
            self.calls.append(dict(params))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

        try:
            if self._on_build is not None:
                self._on_build(params)
            if self._delay:
                time.sleep(self._delay)
            if self._fail_when is not None and self._fail_when(params):
                raise ValueError(f"illegal combination {dict(params)}")
            metrics = self._metrics(params) if self._metrics is not None else {}
            return BuildResult(model_id=model_id_for(params), metrics=metrics)
        finally:
            with self._lock:
                self.in_flight -= 1


class ListSink:
    def __init__(self) -> None:
        self.events: list[Any] = []

    def on_event(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, name: str) -> list[Any]:
        return [e for e in self.events if type(e).__name__ == name]


@pytest.fixture
def make_builder() -> Callable[..., RecordingBuilder]:
    return RecordingBuilder


@pytest.fixture
def event_sink() -> ListSink:
    return ListSink()


@pytest.fixture
def event_bus(event_sink: ListSink) -> EventBus:
    return EventBus([event_sink])
