"""
Hyperparameter space walkers.

A walker only answers "what is the next point". Whether to ask for one
(runtime caps, early stopping, cancellation) is the scheduler's decision.

Both walkers are pure functions of a small cursor, which is what the
recovery store persists instead of the set of visited points.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod

from grid_orchestrator.core.config.search_criteria import (
    CartesianCriteria,
    RandomDiscreteCriteria,
)
from grid_orchestrator.core.domain.errors import RecoveryMismatchError
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.core.domain.space import HyperparameterSpace
from grid_orchestrator.search.checkpoint import WalkerCursor


class SpaceWalker(ABC):
    """Produces the next unvisited point, or ``None`` once exhausted."""

    strategy: str

    def __init__(self, space: HyperparameterSpace) -> None:
        self._space = space
        self._count = space.expansion_count()

    @property
    def space(self) -> HyperparameterSpace:
        return self._space

    @abstractmethod
    def next_point(self) -> ParameterPoint | None:
        """Return the next point and advance the cursor."""

    @abstractmethod
    def cursor(self) -> WalkerCursor:
        """Return the position reached so far."""

    @abstractmethod
    def resume(self, cursor: WalkerCursor) -> None:
        """Continue from a persisted cursor."""

    @abstractmethod
    def planned_count(self) -> int:
        """Upper bound of points this walker will ever produce."""

    def _check_strategy(self, cursor: WalkerCursor) -> None:
        if cursor.strategy != self.strategy:
            raise RecoveryMismatchError(
                f"cannot resume a {self.strategy} walk from a {cursor.strategy} cursor"
            )
        if cursor.position > self.planned_count():
            raise RecoveryMismatchError(
                f"cursor position {cursor.position} is past the end of the walk "
                f"({self.planned_count()} points)"
            )


class ExhaustiveWalker(SpaceWalker):
    """Visits ``point_at(0 .. expansion_count - 1)`` in increasing order."""

    strategy = "Cartesian"

    def __init__(self, space: HyperparameterSpace) -> None:
        super().__init__(space)
        self._next_index = 0

    def next_point(self) -> ParameterPoint | None:
        if self._next_index >= self._count:
            return None
        point = self._space.point_at(self._next_index)
        self._next_index += 1
        return point

    def cursor(self) -> WalkerCursor:
        return WalkerCursor(strategy=self.strategy, position=self._next_index)

    def resume(self, cursor: WalkerCursor) -> None:
        self._check_strategy(cursor)
        self._next_index = cursor.position

    def planned_count(self) -> int:
        return self._count


class RandomBoundedWalker(SpaceWalker):
    """Draws indices without replacement from a seeded sequence.

    The permutation is built lazily (Fisher-Yates over a sparse swap
    table), so memory grows with the number of draws, not the space.
    Stops after ``max_models`` draws when bounded, or on exhaustion.
    """

    strategy = "RandomDiscrete"

    def __init__(self, space: HyperparameterSpace, *, seed: int, max_models: int = 0) -> None:
        super().__init__(space)
        self._seed = seed
        self._limit = min(max_models, self._count) if max_models > 0 else self._count
        self._reset()

    @property
    def seed(self) -> int:
        return self._seed

    def next_point(self) -> ParameterPoint | None:
        if self._drawn >= self._limit:
            return None
        return self._space.point_at(self._draw_index())

    def cursor(self) -> WalkerCursor:
        return WalkerCursor(strategy=self.strategy, position=self._drawn, seed=self._seed)

    def resume(self, cursor: WalkerCursor) -> None:
        self._check_strategy(cursor)
        if cursor.seed != self._seed:
            raise RecoveryMismatchError(
                f"cannot resume a random walk seeded {self._seed} from seed {cursor.seed}"
            )

        # Re-derive the consumed prefix so the remaining sequence is identical.
        self._reset()
        for _ in range(cursor.position):
            self._draw_index()

    def planned_count(self) -> int:
        return self._limit

    def _reset(self) -> None:
        self._rng = random.Random(self._seed)
        self._swaps: dict[int, int] = {}
        self._drawn = 0

    def _draw_index(self) -> int:
        i = self._drawn
        j = self._rng.randrange(i, self._count)

        value_i = self._swaps.pop(i, i)
        self._drawn += 1
        if j == i:
            return value_i

        value_j = self._swaps.get(j, j)
        self._swaps[j] = value_i
        return value_j


def make_walker(
    space: HyperparameterSpace,
    criteria: CartesianCriteria | RandomDiscreteCriteria,
    *,
    seed: int | None = None,
) -> SpaceWalker:
    """Create the walker matching the search strategy."""
    if isinstance(criteria, RandomDiscreteCriteria):
        if seed is None:
            raise ValueError("a resolved seed is required for RandomDiscrete walks")
        return RandomBoundedWalker(space, seed=seed, max_models=criteria.max_models)
    return ExhaustiveWalker(space)
