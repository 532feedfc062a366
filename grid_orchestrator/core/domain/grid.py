"""
Grid: the accumulated mapping from attempted points to build outcomes.

The grid is written by exactly one thread (the scheduler's dispatch loop)
and is therefore not locked. It is keyed by point hash, so the order in
which builds complete never affects its content.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, Literal

from grid_orchestrator.core.domain.errors import DuplicateOutcomeError
from grid_orchestrator.core.domain.points import ParameterPoint


@dataclass(frozen=True, slots=True)
class BuildError:
    """Error record of a failed build."""

    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class ModelOutcome:
    status: Literal["success", "failed"]
    model_id: str | None = None
    metrics: dict[str, float] = field(default_factory=dict)
    error: BuildError | None = None
    duration_seconds: float = 0.0

    @classmethod
    def success(
        cls,
        model_id: str,
        metrics: dict[str, float] | None = None,
        duration_seconds: float = 0.0,
    ) -> ModelOutcome:
        return cls(
            status="success",
            model_id=model_id,
            metrics=dict(metrics or {}),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failure(cls, exc: BaseException, duration_seconds: float = 0.0) -> ModelOutcome:
        return cls(
            status="failed",
            error=BuildError(error_type=type(exc).__name__, message=str(exc)),
            duration_seconds=duration_seconds,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True, slots=True)
class GridEntry:
    point: ParameterPoint
    outcome: ModelOutcome


class Grid:
    """Point-hash keyed outcomes of one grid search."""

    def __init__(self, grid_id: str) -> None:
        self.grid_id = grid_id
        self._entries: dict[str, GridEntry] = {}
        self._failed = 0

    def record(self, point: ParameterPoint, outcome: ModelOutcome) -> None:
        """Record the outcome of a point. A point gets at most one outcome."""
        if point.hash in self._entries:
            raise DuplicateOutcomeError(
                f"point {point.as_dict()} already has an outcome in grid {self.grid_id}"
            )
        self._entries[point.hash] = GridEntry(point=point, outcome=outcome)
        if not outcome.succeeded:
            self._failed += 1

    def has_outcome(self, point_hash: str) -> bool:
        return point_hash in self._entries

    def get(self, point: ParameterPoint) -> ModelOutcome | None:
        entry = self._entries.get(point.hash)
        return entry.outcome if entry is not None else None

    def entries(self) -> list[GridEntry]:
        return list(self._entries.values())

    def model_ids(self) -> list[str]:
        return [
            entry.outcome.model_id
            for entry in self._entries.values()
            if entry.outcome.succeeded and entry.outcome.model_id is not None
        ]

    def failures(self) -> list[GridEntry]:
        return [entry for entry in self._entries.values() if not entry.outcome.succeeded]

    # Counters are safe to read from other threads while the grid is written.
    @property
    def success_count(self) -> int:
        return len(self._entries) - self._failed

    @property
    def failure_count(self) -> int:
        return self._failed

    def sorted_by_metric(self, metric: str, *, decreasing: bool = False) -> list[GridEntry]:
        """Successful entries that report ``metric``, best first.

        ``decreasing=True`` ranks larger values first (e.g. AUC).
        """
        scored = [
            entry
            for entry in self._entries.values()
            if entry.outcome.succeeded
            and metric in entry.outcome.metrics
            and not math.isnan(entry.outcome.metrics[metric])
        ]
        return sorted(
            scored,
            key=lambda entry: entry.outcome.metrics[metric],
            reverse=decreasing,
        )

    def as_model_map(self) -> dict[str, str | None]:
        """point hash -> model id (``None`` for failed builds)."""
        return {key: entry.outcome.model_id for key, entry in self._entries.items()}

    def __contains__(self, point: object) -> bool:
        return isinstance(point, ParameterPoint) and point.hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[GridEntry]:
        return iter(list(self._entries.values()))
