"""Tagged hyperparameter values.

Hyperparameter candidates arrive as loosely typed JSON scalars. They are
classified into a closed set of kinds at space construction time so nothing
downstream has to deal with arbitrary objects.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Union

from grid_orchestrator.core.domain.errors import SpaceFormatError

Scalar = Union[bool, int, float, str]


class ValueKind(str, Enum):
    INT = "int"
    FLOAT = "float"
    TEXT = "text"
    BOOL = "bool"


def value_kind(value: Any) -> ValueKind:
    """Return the kind of a scalar value or raise ``SpaceFormatError``.

    ``bool`` is checked before ``int`` since it is an ``int`` subclass.
    """
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.INT
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SpaceFormatError("NaN and infinite values are not valid hyperparameter values", value)
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.TEXT
    raise SpaceFormatError(
        f"unsupported hyperparameter value of type {type(value).__name__}",
        value,
    )


def is_scalar(value: Any) -> bool:
    return isinstance(value, (bool, int, float, str))


def tagged(value: Scalar) -> list[Any]:
    """Encode a value as ``[kind, value]`` for kind-sensitive hashing.

    ``-0.0`` is encoded as ``0.0``: the two compare equal and must name the
    same point.
    """
    kind = value_kind(value)
    if kind is ValueKind.FLOAT and value == 0.0:
        value = 0.0
    return [kind.value, value]
