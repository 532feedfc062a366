"""Grid search request model.

This module defines the configuration surface consumed from an external
request layer. It is independent of wire format: the raw form is a plain
JSON-compatible mapping where ``hyper_parameters`` and ``search_criteria``
may also be given as JSON text.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from grid_orchestrator.core.config.parallelism import SEQUENTIAL_PARALLELISM, Parallelism
from grid_orchestrator.core.config.search_criteria import (
    CartesianCriteria,
    SearchCriteria,
    parse_search_criteria,
)
from grid_orchestrator.core.domain.errors import ConfigValidationError, SpaceFormatError
from grid_orchestrator.core.domain.space import HyperparameterSpace

REQUEST_FIELDS = frozenset(
    {
        "parameters",
        "hyper_parameters",
        "search_criteria",
        "parallelism",
        "recovery_dir",
        "grid_id",
    }
)


def new_grid_id() -> str:
    return f"grid_{uuid.uuid4().hex[:16]}"


class GridSearchRequest(BaseModel):
    """Validated grid search request.

    JSON example:
        {
          "parameters": {"seed": 42},
          "hyper_parameters": {"ntrees": [10, 50], "max_depth": [3, 5]},
          "search_criteria": {"strategy": "RandomDiscrete", "max_models": 3},
          "parallelism": 2,
          "recovery_dir": "/mnt/recovery/grid-1"
        }
    """

    parameters: dict[str, Any] = Field(default_factory=dict)
    hyper_parameters: dict[str, Any]
    search_criteria: SearchCriteria = Field(default_factory=CartesianCriteria)
    parallelism: int = Field(default=SEQUENTIAL_PARALLELISM, ge=0)
    recovery_dir: Path | None = None
    grid_id: str | None = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_raw(cls, raw: Any) -> GridSearchRequest:
        """Validate a raw request, raising the typed orchestration errors.

        Order of checks: request shape, hyper_parameters, search_criteria,
        parallelism, base parameters. Nothing is dispatched on failure.
        """
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ConfigValidationError(f"can't parse grid request: {exc.msg}") from exc

        if not isinstance(raw, Mapping):
            raise ConfigValidationError(f"grid request must be an object; got {raw!r}")

        unknown = sorted(set(raw) - REQUEST_FIELDS)
        if unknown:
            raise ConfigValidationError(f"unknown grid request fields: {unknown}")

        if "hyper_parameters" not in raw:
            raise SpaceFormatError("hyper_parameters is required", None)

        space = HyperparameterSpace.from_raw(raw["hyper_parameters"])
        criteria = parse_search_criteria(raw.get("search_criteria"))
        parallelism = Parallelism.from_value(raw.get("parallelism", SEQUENTIAL_PARALLELISM))

        parameters = raw.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise ConfigValidationError(f"parameters must be an object; got {parameters!r}")

        try:
            json.dumps(parameters, allow_nan=False, default=str)
        except ValueError as exc:
            raise ConfigValidationError(
                f"parameters must be JSON serializable without NaN or infinite values: {exc}"
            ) from exc

        # Do not check validity of the base parameters here: builders are
        # expected to reject illegal combinations per point.
        overlap = sorted(set(parameters) & set(space.axis_names()))
        if overlap:
            raise ConfigValidationError(
                f"grid search parameters {overlap} are set in both parameters and "
                "hyper_parameters; set each in one place only"
            )

        try:
            return cls.model_validate(
                {
                    "parameters": dict(parameters),
                    "hyper_parameters": space.to_raw(),
                    "search_criteria": criteria,
                    "parallelism": parallelism.to_value(),
                    "recovery_dir": raw.get("recovery_dir"),
                    "grid_id": raw.get("grid_id"),
                }
            )
        except ValidationError as exc:
            raise ConfigValidationError(f"invalid grid request: {exc}") from exc

    def space(self) -> HyperparameterSpace:
        return HyperparameterSpace.from_raw(self.hyper_parameters)

    def parallelism_directive(self) -> Parallelism:
        return Parallelism.from_value(self.parallelism)

    def with_grid_id(self, grid_id: str) -> GridSearchRequest:
        return self.model_copy(update={"grid_id": grid_id})

    def fingerprint(self) -> dict[str, Any]:
        """Fields that must match between a recovery manifest and a resumed request."""
        return {
            "hyper_parameters": self.hyper_parameters,
            "search_criteria": self.search_criteria.model_dump(mode="json"),
            "parameters": json.loads(json.dumps(self.parameters, sort_keys=True, default=str)),
        }
