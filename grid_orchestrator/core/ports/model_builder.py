"""Model builder port.

This module defines the boundary to the external model-fitting service.
The orchestrator never trains models itself: it hands a fully resolved
parameter mapping to a builder and keeps only the returned identifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class BuildResult:
    """What a builder returns for one successful build."""

    model_id: str
    metrics: dict[str, float] = field(default_factory=dict)


class ModelBuilder(Protocol):
    """External model builder.

    ``build`` is called concurrently from worker threads when parallelism
    is greater than one. Raising from ``build`` marks only that point as
    failed; the grid keeps going.
    """

    def build(self, params: Mapping[str, Any]) -> BuildResult:
        """Fit one model with the given parameters."""


@runtime_checkable
class CapacityReporter(Protocol):
    """Optional builder capability used by adaptive parallelism."""

    def available_capacity(self) -> int:
        """Return how many concurrent builds can currently be accepted."""
