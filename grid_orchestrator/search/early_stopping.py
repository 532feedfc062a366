"""Early stopping of random grid searches on a model metric."""

from __future__ import annotations

from grid_orchestrator.core.config.search_criteria import (
    CartesianCriteria,
    RandomDiscreteCriteria,
)
from grid_orchestrator.core.domain.grid import ModelOutcome

# Metrics where larger is better. Everything else is minimized.
MAXIMIZED_METRICS: frozenset[str] = frozenset(
    {
        "auc",
        "aucpr",
        "accuracy",
        "r2",
        "f1",
        "precision",
        "recall",
        "lift_top_group",
    }
)


class EarlyStopping:
    """Stop when the best-so-far metric has converged.

    After each successful model the best metric seen so far is appended to
    a monotone series. With ``k = stopping_rounds``, the grid stops once the
    simple moving average of the last ``k`` values does not improve on the
    moving average ``k`` models earlier by more than ``tolerance`` (relative).
    At least ``2 * k`` successful models are needed before a decision.
    """

    def __init__(
        self,
        *,
        metric: str,
        rounds: int,
        tolerance: float,
        maximize: bool | None = None,
    ) -> None:
        if rounds <= 0:
            raise ValueError("rounds must be > 0")
        self.metric = metric
        self.rounds = rounds
        self.tolerance = tolerance
        self.maximize = metric.lower() in MAXIMIZED_METRICS if maximize is None else maximize
        self._best_so_far: list[float] = []

    def observe(self, outcome: ModelOutcome) -> None:
        if not outcome.succeeded or self.metric not in outcome.metrics:
            return

        value = float(outcome.metrics[self.metric])
        if value != value:  # NaN never improves anything
            return

        if self._best_so_far:
            previous = self._best_so_far[-1]
            value = max(previous, value) if self.maximize else min(previous, value)
        self._best_so_far.append(value)

    def should_stop(self) -> bool:
        k = self.rounds
        if len(self._best_so_far) < 2 * k:
            return False

        window = self._best_so_far[-2 * k:]
        reference = sum(window[:k]) / k
        latest = sum(window[k:]) / k

        gain = latest - reference if self.maximize else reference - latest
        scale = abs(reference) if reference != 0 else 1.0
        return gain / scale <= self.tolerance

    @property
    def observed(self) -> int:
        return len(self._best_so_far)


def early_stopping_for(
    criteria: CartesianCriteria | RandomDiscreteCriteria,
) -> EarlyStopping | None:
    if not isinstance(criteria, RandomDiscreteCriteria) or not criteria.early_stopping_enabled:
        return None
    assert criteria.stopping_metric is not None
    return EarlyStopping(
        metric=criteria.stopping_metric,
        rounds=criteria.stopping_rounds,
        tolerance=criteria.stopping_tolerance,
    )
