"""
Hyperparameter space construction and expansion.

This module turns a raw ``hyper_parameters`` mapping into an enumerable
space description. Points are never materialized up front: the total
count and any single point are computed from the axis sizes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from grid_orchestrator.core.domain.errors import SpaceFormatError
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.core.domain.values import Scalar, is_scalar, value_kind

SUBSPACES_KEY = "subspaces"

# Nesting limit for the reserved subspaces key.
MAX_SUBSPACE_DEPTH = 16


@dataclass(frozen=True, slots=True)
class Axis:
    """One hyperparameter name plus its ordered candidate values."""

    name: str
    values: tuple[Scalar, ...]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True, slots=True)
class HyperparameterSpace:
    """
    Ordered axes plus ordered child spaces.

    The expansion of a space is the Cartesian product of its own axes,
    followed by the expansions of its subspaces in declaration order.
    Subspaces are unioned with the parent's own points, never crossed.
    """

    axes: tuple[Axis, ...]
    subspaces: tuple[HyperparameterSpace, ...] = ()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_raw(cls, raw: Any) -> HyperparameterSpace:
        """Parse a raw mapping (or its JSON text) into a space."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise SpaceFormatError(
                    f"can't parse the hyper_parameters dictionary: {exc.msg}", raw
                ) from exc

        space = _parse_space(raw, depth=0)

        if not space.axes and not space.subspaces:
            raise SpaceFormatError("hyper_parameters must declare at least one axis", raw)

        return space

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def own_count(self) -> int:
        """Number of points produced by this space's own axes."""
        if not self.axes:
            # A pure container of subspaces has no direct points.
            return 0 if self.subspaces else 1

        count = 1
        for axis in self.axes:
            count *= len(axis)
        return count

    def expansion_count(self) -> int:
        """Total number of points, without materializing them."""
        return self.own_count() + sum(sub.expansion_count() for sub in self.subspaces)

    def point_at(self, index: int) -> ParameterPoint:
        """Return the point at ``index`` of the deterministic expansion order.

        Own points come first, in row-major order with the last declared
        axis varying fastest. Subspace points follow, subspace by subspace.
        """
        if index < 0:
            raise IndexError(f"point index must be >= 0, got {index}")

        own = self.own_count()
        if index < own:
            return self._own_point_at(index)

        offset = index - own
        for sub in self.subspaces:
            count = sub.expansion_count()
            if offset < count:
                return sub.point_at(offset)
            offset -= count

        raise IndexError(
            f"point index {index} out of range for expansion of {self.expansion_count()}"
        )

    def iter_points(self) -> Iterator[ParameterPoint]:
        for index in range(self.expansion_count()):
            yield self.point_at(index)

    def axis_names(self) -> list[str]:
        """All axis names of this space and its subspaces, first-seen order."""
        names: list[str] = [axis.name for axis in self.axes]
        for sub in self.subspaces:
            for name in sub.axis_names():
                if name not in names:
                    names.append(name)
        return names

    def depth(self) -> int:
        if not self.subspaces:
            return 0
        return 1 + max(sub.depth() for sub in self.subspaces)

    def to_raw(self) -> dict[str, Any]:
        """Return the normalized raw form (every axis as a list)."""
        raw: dict[str, Any] = {axis.name: list(axis.values) for axis in self.axes}
        if self.subspaces:
            raw[SUBSPACES_KEY] = [sub.to_raw() for sub in self.subspaces]
        return raw

    def _own_point_at(self, index: int) -> ParameterPoint:
        chosen: list[tuple[str, Scalar]] = []
        remainder = index

        # Mixed-radix decode, least significant digit is the last axis.
        for axis in reversed(self.axes):
            remainder, digit = divmod(remainder, len(axis))
            chosen.append((axis.name, axis.values[digit]))

        chosen.reverse()
        return ParameterPoint(tuple(chosen))


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse_space(raw: Any, depth: int) -> HyperparameterSpace:
    if depth > MAX_SUBSPACE_DEPTH:
        raise SpaceFormatError(
            f"subspaces nested deeper than {MAX_SUBSPACE_DEPTH} levels", raw
        )

    if not isinstance(raw, Mapping):
        raise SpaceFormatError("hyper_parameters must be an object", raw)

    axes: list[Axis] = []
    subspaces: list[HyperparameterSpace] = []

    for name, value in raw.items():
        if not isinstance(name, str) or not name:
            raise SpaceFormatError("hyperparameter names must be non-empty strings", name)

        if name == SUBSPACES_KEY:
            subspaces.extend(_parse_subspaces(value, depth))
            continue

        axes.append(Axis(name=name, values=_parse_values(name, value)))

    if depth > 0 and not axes and not subspaces:
        raise SpaceFormatError("subspace must declare at least one axis", raw)

    return HyperparameterSpace(axes=tuple(axes), subspaces=tuple(subspaces))


def _parse_subspaces(value: Any, depth: int) -> list[HyperparameterSpace]:
    if not isinstance(value, list):
        raise SpaceFormatError(f"'{SUBSPACES_KEY}' must be an array of objects", value)

    parsed: list[HyperparameterSpace] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            raise SpaceFormatError(f"'{SUBSPACES_KEY}' entries must be objects", entry)
        parsed.append(_parse_space(entry, depth + 1))
    return parsed


def _parse_values(name: str, value: Any) -> tuple[Scalar, ...]:
    if is_scalar(value):
        value_kind(value)
        return (value,)

    if not isinstance(value, (list, tuple)):
        raise SpaceFormatError(
            f"hyperparameter '{name}' must be a scalar or an array of scalars", value
        )

    if not value:
        raise SpaceFormatError(f"hyperparameter '{name}' has no candidate values", value)

    for item in value:
        if not is_scalar(item):
            raise SpaceFormatError(
                f"hyperparameter '{name}' contains a non-scalar value", item
            )
        value_kind(item)

    return tuple(value)
