"""Checkpoint record models.

A checkpoint record is the unit persisted by the recovery store: one JSON
line per dispatched point and one per completed point. Together they are
enough to rebuild the grid and the walker position after a crash.
"""

# pylint: disable=missing-class-docstring
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    model_validator,
)

from grid_orchestrator.core.domain.grid import BuildError, ModelOutcome
from grid_orchestrator.core.domain.points import ParameterPoint

CHECKPOINT_SCHEMA_VERSION = 1

# Strict members keep 1, 1.0 and True apart when records are read back.
PointValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


class WalkerCursor(BaseModel):
    """Resumable walker position.

    ``position`` is the next exhaustive index, or the number of random
    draws already consumed. ``seed`` is only set for random walks.
    """

    strategy: Literal["Cartesian", "RandomDiscrete"]
    position: int = Field(..., ge=0)
    seed: int | None = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class OutcomeRecord(BaseModel):
    status: Literal["success", "failed"]
    model_id: str | None = None
    metrics: dict[str, float] = Field(default_factory=dict)
    error_type: str | None = None
    error_message: str | None = None
    duration_seconds: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def from_outcome(cls, outcome: ModelOutcome) -> OutcomeRecord:
        return cls(
            status=outcome.status,
            model_id=outcome.model_id,
            metrics=dict(outcome.metrics),
            error_type=outcome.error.error_type if outcome.error else None,
            error_message=outcome.error.message if outcome.error else None,
            duration_seconds=outcome.duration_seconds,
        )

    def to_outcome(self) -> ModelOutcome:
        error = None
        if self.status == "failed":
            error = BuildError(
                error_type=self.error_type or "UnknownError",
                message=self.error_message or "",
            )
        return ModelOutcome(
            status=self.status,
            model_id=self.model_id,
            metrics=dict(self.metrics),
            error=error,
            duration_seconds=self.duration_seconds,
        )


class CheckpointRecord(BaseModel):
    schema_version: Literal[1] = CHECKPOINT_SCHEMA_VERSION
    kind: Literal["dispatched", "completed"]

    grid_id: str = Field(..., min_length=1)
    point_hash: str = Field(..., min_length=1)
    point: dict[str, PointValue]

    cursor: WalkerCursor
    outcome: OutcomeRecord | None = None

    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def validate_outcome_for_kind(self) -> CheckpointRecord:
        """
        - If kind == "dispatched": outcome must be None
        - If kind == "completed": outcome must be present
        """
        if self.kind == "dispatched" and self.outcome is not None:
            raise ValueError("dispatched records must not carry an outcome")
        if self.kind == "completed" and self.outcome is None:
            raise ValueError("completed records must carry an outcome")
        return self

    @classmethod
    def dispatched(
        cls,
        *,
        grid_id: str,
        point: ParameterPoint,
        cursor: WalkerCursor,
    ) -> CheckpointRecord:
        return cls(
            kind="dispatched",
            grid_id=grid_id,
            point_hash=point.hash,
            point=point.as_dict(),
            cursor=cursor,
        )

    @classmethod
    def completed(
        cls,
        *,
        grid_id: str,
        point: ParameterPoint,
        cursor: WalkerCursor,
        outcome: ModelOutcome,
    ) -> CheckpointRecord:
        return cls(
            kind="completed",
            grid_id=grid_id,
            point_hash=point.hash,
            point=point.as_dict(),
            cursor=cursor,
            outcome=OutcomeRecord.from_outcome(outcome),
        )

    def to_point(self) -> ParameterPoint:
        return ParameterPoint.from_mapping(self.point)
