"""Search criteria models.

The strategy tag is inspected before anything else so an unknown strategy
is reported as such, rather than as a confusing field validation error of
whichever variant happens to be tried first.
"""

from __future__ import annotations

import json
import secrets
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from grid_orchestrator.core.domain.errors import (
    CriteriaValidationError,
    InvalidBoundError,
    UnknownStrategyError,
)

# Seed value meaning "choose one when the job starts".
AUTO_SEED = -1

_BOUND_FIELDS = frozenset(
    {"max_models", "max_runtime_secs", "seed", "stopping_rounds", "stopping_tolerance"}
)


class CartesianCriteria(BaseModel):
    """Visit every point of the space, in order, exactly once."""

    strategy: Literal["Cartesian"] = "Cartesian"

    model_config = ConfigDict(extra="forbid", frozen=True)


class RandomDiscreteCriteria(BaseModel):
    """Sample points without replacement under optional hard caps.

    ``max_models == 0`` and ``max_runtime_secs == 0`` mean unbounded.
    """

    strategy: Literal["RandomDiscrete"] = "RandomDiscrete"

    max_models: int = Field(default=0, ge=0)
    max_runtime_secs: float = Field(default=0.0, ge=0)
    seed: int = AUTO_SEED

    # Early stopping on a model metric reported by the builder
    stopping_metric: str | None = Field(default=None, min_length=1)
    stopping_rounds: int = Field(default=0, ge=0)
    stopping_tolerance: float = Field(default=0.001, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_early_stopping(self) -> RandomDiscreteCriteria:
        if self.stopping_rounds > 0 and self.stopping_metric is None:
            raise ValueError("stopping_rounds requires stopping_metric")
        return self

    @property
    def early_stopping_enabled(self) -> bool:
        return self.stopping_rounds > 0 and self.stopping_metric is not None


SearchCriteria = Annotated[
    Union[CartesianCriteria, RandomDiscreteCriteria],
    Field(discriminator="strategy"),
]

STRATEGIES: dict[str, type[BaseModel]] = {
    "Cartesian": CartesianCriteria,
    "RandomDiscrete": RandomDiscreteCriteria,
}


def parse_search_criteria(raw: Any) -> CartesianCriteria | RandomDiscreteCriteria:
    """Parse raw search criteria.

    Missing criteria fall back to exhaustive Cartesian search.
    """
    if raw is None:
        return CartesianCriteria()

    if isinstance(raw, (CartesianCriteria, RandomDiscreteCriteria)):
        return raw

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CriteriaValidationError(
                f"can't parse the search_criteria dictionary: {exc.msg}; raw value: {raw!r}"
            ) from exc

    if not isinstance(raw, Mapping):
        raise CriteriaValidationError(f"search_criteria must be an object; got {raw!r}")

    strategy = raw.get("strategy")
    model_cls = STRATEGIES.get(strategy) if isinstance(strategy, str) else None
    if model_cls is None:
        raise UnknownStrategyError(strategy)

    try:
        return model_cls.model_validate(dict(raw))
    except ValidationError as exc:
        raise _translate(strategy, exc, raw) from exc


def resolve_seed(criteria: CartesianCriteria | RandomDiscreteCriteria) -> int | None:
    """Return the effective sampling seed, drawing one if the criteria asks for it."""
    if not isinstance(criteria, RandomDiscreteCriteria):
        return None
    if criteria.seed != AUTO_SEED:
        return criteria.seed
    return secrets.randbits(63)


def _translate(strategy: str, exc: ValidationError, raw: Any) -> CriteriaValidationError:
    errors = exc.errors()
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or strategy}: {err['msg']}"
        for err in errors
    )
    message = f"invalid {strategy} search_criteria ({details}); raw value: {dict(raw)!r}"

    if all(
        err["loc"] and err["loc"][0] in _BOUND_FIELDS and err["type"] != "extra_forbidden"
        for err in errors
    ):
        return InvalidBoundError(message)
    return CriteriaValidationError(message)
