"""Parameter points and their stable identifiers."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from grid_orchestrator.core.domain.values import Scalar, tagged


@dataclass(frozen=True, slots=True)
class ParameterPoint:
    """One fully resolved assignment of a value to every axis of a space.

    Two points are equal iff their value mappings are equal, including the
    value kind (``1``, ``1.0`` and ``True`` are distinct). Axis order is kept
    for display and for handing parameters to builders, but does not take
    part in equality or hashing.
    """

    items: tuple[tuple[str, Scalar], ...]
    _hash: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_hash", point_hash(self.items))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Scalar]) -> ParameterPoint:
        return cls(tuple(values.items()))

    @property
    def hash(self) -> str:
        return self._hash

    def as_dict(self) -> dict[str, Scalar]:
        return dict(self.items)

    def __getitem__(self, name: str) -> Scalar:
        for key, value in self.items:
            if key == name:
                return value
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return (key for key, _ in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParameterPoint):
            return NotImplemented
        return self._hash == other._hash

    def __hash__(self) -> int:
        return hash(self._hash)


def canonical_payload(items: tuple[tuple[str, Scalar], ...] | Mapping[str, Scalar]) -> str:
    """Return the canonical, kind-tagged JSON encoding of a point."""
    pairs = items.items() if isinstance(items, Mapping) else items
    encoded: dict[str, Any] = {name: tagged(value) for name, value in pairs}
    return json.dumps(encoded, sort_keys=True, separators=(",", ":"))


def point_hash(items: tuple[tuple[str, Scalar], ...] | Mapping[str, Scalar]) -> str:
    """Return a stable hex identifier for a point.

    The value is stable across processes and Python versions, which is
    required for matching recovered checkpoints to re-walked points.
    """
    payload = canonical_payload(items).encode("utf-8")
    return hashlib.blake2b(payload, digest_size=16).hexdigest()
