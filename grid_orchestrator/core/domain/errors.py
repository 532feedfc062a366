"""Exception hierarchy for grid search orchestration.

Validation errors are raised before any build is dispatched. Build failures
of individual parameter points are never raised; they are recorded in the
grid as failed outcomes instead.
"""

from __future__ import annotations

from typing import Any


class GridSearchError(Exception):
    """Base class for all orchestration errors."""


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


class SpaceFormatError(GridSearchError):
    """Malformed ``hyper_parameters`` mapping.

    The offending raw value is kept on the exception so callers can report
    exactly what was rejected.
    """

    def __init__(self, message: str, raw_value: Any = None) -> None:
        super().__init__(f"{message}; raw value: {raw_value!r}")
        self.reason = message
        self.raw_value = raw_value


class CriteriaValidationError(GridSearchError):
    """Invalid ``search_criteria``."""


class UnknownStrategyError(CriteriaValidationError):
    """Strategy tag missing or not recognized."""

    def __init__(self, strategy: Any) -> None:
        super().__init__(
            f"search_criteria.strategy must be one of Cartesian, RandomDiscrete; got {strategy!r}"
        )
        self.strategy = strategy


class InvalidBoundError(CriteriaValidationError):
    """A search bound is out of range (e.g. negative max_models)."""


class ConfigValidationError(GridSearchError):
    """Invalid grid request field outside the space and criteria."""


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


class RecoveryIOError(GridSearchError):
    """Recovery storage cannot be read or written.

    Fatal to the job: continuing without durable checkpoints could duplicate
    or drop work on resume.
    """


class RecoveryMismatchError(GridSearchError):
    """The recovery directory belongs to a different grid."""


# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------


class AlreadyStartedError(GridSearchError):
    """``GridJob.start()`` was called more than once."""


class JobNotFinishedError(GridSearchError):
    """The grid result was requested before the job reached a terminal state."""


class InvalidJobTransitionError(GridSearchError):
    """A job state transition outside the allowed lifecycle."""


class DuplicateOutcomeError(GridSearchError):
    """A second outcome was recorded for a point that already has one."""
