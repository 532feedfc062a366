"""Parallelism degree policies.

Sequential and fixed degrees are constants. The adaptive degree is asked
for before every dispatch round, so it can follow the builder's capacity
while the grid is running.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

from grid_orchestrator.core.config.parallelism import Parallelism
from grid_orchestrator.core.ports.model_builder import CapacityReporter

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ADAPTIVE_DEGREE = 64


class ParallelismPolicy(Protocol):
    """Pluggable sizing strategy for adaptive parallelism."""

    @property
    def max_degree(self) -> int:
        """Upper bound of any degree this policy returns."""

    def degree(self, builder: Any) -> int:
        """Return the number of builds that may be in flight right now (>= 1)."""


class BuilderCapacityPolicy:
    """Follows ``builder.available_capacity()``.

    Builders that do not report capacity get one build per CPU.
    """

    def __init__(self, *, max_degree: int = DEFAULT_MAX_ADAPTIVE_DEGREE) -> None:
        if max_degree < 1:
            raise ValueError("max_degree must be >= 1")
        self._max_degree = max_degree

    @property
    def max_degree(self) -> int:
        return self._max_degree

    def degree(self, builder: Any) -> int:
        if isinstance(builder, CapacityReporter):
            try:
                capacity = int(builder.available_capacity())
            except Exception as exc:  # pylint: disable=broad-exception-caught
                # Any failed query falls back to one build at a time.
                LOGGER.warning("Builder capacity query failed, using degree 1: %r", exc)
                capacity = 1
        else:
            capacity = os.cpu_count() or 1
        return max(1, min(capacity, self._max_degree))


class FixedDegreePolicy:
    """Constant degree for sequential and fixed parallelism."""

    def __init__(self, degree: int) -> None:
        if degree < 1:
            raise ValueError("degree must be >= 1")
        self._degree = degree

    @property
    def max_degree(self) -> int:
        return self._degree

    def degree(self, builder: Any) -> int:
        return self._degree


def policy_for(
    parallelism: Parallelism,
    adaptive_policy: ParallelismPolicy | None = None,
) -> ParallelismPolicy:
    if parallelism.is_adaptive:
        return adaptive_policy if adaptive_policy is not None else BuilderCapacityPolicy()
    assert parallelism.degree is not None
    return FixedDegreePolicy(parallelism.degree)
