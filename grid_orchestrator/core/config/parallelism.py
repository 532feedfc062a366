"""Parallelism directive for grid model building.

The integer wire form is ``0`` for adaptive, ``1`` for sequential and any
``N > 1`` for a fixed degree.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from grid_orchestrator.core.domain.errors import ConfigValidationError


class ParallelismMode(str, Enum):
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"
    FIXED = "fixed"


ADAPTIVE_PARALLELISM = 0
SEQUENTIAL_PARALLELISM = 1


@dataclass(frozen=True, slots=True)
class Parallelism:
    mode: ParallelismMode
    degree: int | None = None

    @classmethod
    def sequential(cls) -> Parallelism:
        return cls(ParallelismMode.SEQUENTIAL, 1)

    @classmethod
    def adaptive(cls) -> Parallelism:
        return cls(ParallelismMode.ADAPTIVE, None)

    @classmethod
    def fixed(cls, degree: int) -> Parallelism:
        if degree <= 1:
            raise ConfigValidationError(f"fixed parallelism must be > 1; given value: {degree}")
        return cls(ParallelismMode.FIXED, degree)

    @classmethod
    def from_value(cls, value: Any) -> Parallelism:
        """Parse the integer form. Negative or non-integer values are rejected."""
        if isinstance(value, Parallelism):
            return value

        if isinstance(value, bool):
            raise ConfigValidationError(f"parallelism must be an integer; given value: {value!r}")

        if isinstance(value, str):
            try:
                value = int(value.strip())
            except ValueError as exc:
                raise ConfigValidationError(
                    f"could not parse given parallelism value: '{value}' - not a number"
                ) from exc

        if not isinstance(value, int):
            raise ConfigValidationError(f"parallelism must be an integer; given value: {value!r}")

        if value < 0:
            raise ConfigValidationError(f"parallelism level must be >= 0; given value: {value}")
        if value == ADAPTIVE_PARALLELISM:
            return cls.adaptive()
        if value == SEQUENTIAL_PARALLELISM:
            return cls.sequential()
        return cls.fixed(value)

    @property
    def is_adaptive(self) -> bool:
        return self.mode is ParallelismMode.ADAPTIVE

    def to_value(self) -> int:
        if self.mode is ParallelismMode.ADAPTIVE:
            return ADAPTIVE_PARALLELISM
        if self.mode is ParallelismMode.SEQUENTIAL:
            return SEQUENTIAL_PARALLELISM
        assert self.degree is not None
        return self.degree

    def __str__(self) -> str:
        if self.mode is ParallelismMode.FIXED:
            return f"fixed({self.degree})"
        return self.mode.value
