"""Public API for the grid_orchestrator package.

Only symbols imported here are considered part of the stable,
supported external interface.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ----------------------------------------------------------------------
# Configuration API
# ----------------------------------------------------------------------
from grid_orchestrator.core.config.builder_config import BuilderConfig
from grid_orchestrator.core.config.grid_request import GridSearchRequest
from grid_orchestrator.core.config.parallelism import Parallelism
from grid_orchestrator.core.config.search_criteria import (
    CartesianCriteria,
    RandomDiscreteCriteria,
    parse_search_criteria,
)

# ----------------------------------------------------------------------
# Domain Types
# ----------------------------------------------------------------------
from grid_orchestrator.core.domain.errors import (
    AlreadyStartedError,
    ConfigValidationError,
    CriteriaValidationError,
    GridSearchError,
    InvalidBoundError,
    JobNotFinishedError,
    RecoveryIOError,
    RecoveryMismatchError,
    SpaceFormatError,
    UnknownStrategyError,
)
from grid_orchestrator.core.domain.grid import Grid, ModelOutcome
from grid_orchestrator.core.domain.job_state_machine import JobState
from grid_orchestrator.core.domain.points import ParameterPoint
from grid_orchestrator.core.domain.space import HyperparameterSpace

# ----------------------------------------------------------------------
# Builder Interface
# ----------------------------------------------------------------------
from grid_orchestrator.core.ports.model_builder import BuildResult, ModelBuilder

# ----------------------------------------------------------------------
# Orchestration
# ----------------------------------------------------------------------
from grid_orchestrator.search.capacity import BuilderCapacityPolicy, ParallelismPolicy
from grid_orchestrator.search.grid_job import GridJob, JobStatus
from grid_orchestrator.search.recovery import FileRecoveryStore, NullRecoveryStore

# ----------------------------------------------------------------------
# Public API definition
# ----------------------------------------------------------------------

__all__ = [
    # Config
    "BuilderConfig",
    "GridSearchRequest",
    "Parallelism",
    "CartesianCriteria",
    "RandomDiscreteCriteria",
    "parse_search_criteria",

    # Domain
    "HyperparameterSpace",
    "ParameterPoint",
    "Grid",
    "ModelOutcome",
    "JobState",

    # Errors
    "GridSearchError",
    "SpaceFormatError",
    "CriteriaValidationError",
    "UnknownStrategyError",
    "InvalidBoundError",
    "ConfigValidationError",
    "RecoveryIOError",
    "RecoveryMismatchError",
    "AlreadyStartedError",
    "JobNotFinishedError",

    # Builder interface
    "ModelBuilder",
    "BuildResult",

    # Orchestration
    "GridJob",
    "JobStatus",
    "ParallelismPolicy",
    "BuilderCapacityPolicy",
    "FileRecoveryStore",
    "NullRecoveryStore",

    # Version
    "__version__",
]

# ----------------------------------------------------------------------
# Package version
# ----------------------------------------------------------------------

try:
    __version__ = version("grid-orchestrator")
except PackageNotFoundError:
    __version__ = "0.0.0"
