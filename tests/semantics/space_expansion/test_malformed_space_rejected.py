"""
Semantic test: malformed hyper_parameters.

Invariant:
Every malformed space is rejected with SpaceFormatError, which carries
the offending raw value.
"""

from __future__ import annotations

import pytest

from grid_orchestrator.core.domain.errors import SpaceFormatError
from grid_orchestrator.core.domain.space import MAX_SUBSPACE_DEPTH, HyperparameterSpace


@pytest.mark.parametrize(
    "raw",
    [
        [1, 2, 3],
        42,
        {},
        {"ntrees": []},
        {"ntrees": [[1, 2]]},
        {"ntrees": {"min": 1}},
        {"ntrees": [10, None]},
        {"learn_rate": [0.1, float("nan")]},
        {"x": [1.0, float("inf")]},
        {"x": [float("-inf")]},
        '{"x": [1.0, Infinity]}',
        {"": [1]},
        {"a": [1], "subspaces": {"b": [1]}},
        {"a": [1], "subspaces": [[1, 2]]},
        {"a": [1], "subspaces": [{}]},
        "{not json",
    ],
)
def test_malformed_space_raises_space_format_error(raw) -> None:
    with pytest.raises(SpaceFormatError):
        HyperparameterSpace.from_raw(raw)


def test_error_carries_offending_value() -> None:
    with pytest.raises(SpaceFormatError) as exc_info:
        HyperparameterSpace.from_raw({"ntrees": [10, [20]]})

    assert exc_info.value.raw_value == [20]
    assert "ntrees" in exc_info.value.reason


def _nested(levels: int) -> dict:
    space: dict = {"a": [1]}
    for _ in range(levels):
        space = {"a": [1], "subspaces": [space]}
    return space


def test_nesting_limit_is_enforced() -> None:
    assert HyperparameterSpace.from_raw(_nested(MAX_SUBSPACE_DEPTH)).depth() == MAX_SUBSPACE_DEPTH

    with pytest.raises(SpaceFormatError):
        HyperparameterSpace.from_raw(_nested(MAX_SUBSPACE_DEPTH + 1))
