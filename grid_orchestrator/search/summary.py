from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from grid_orchestrator.core.config.search_criteria import RandomDiscreteCriteria

if TYPE_CHECKING:
    from grid_orchestrator.core.config.grid_request import GridSearchRequest
    from grid_orchestrator.core.domain.grid import Grid
    from grid_orchestrator.core.domain.space import HyperparameterSpace

# Above this many points a Cartesian search is flagged as long-running.
LARGE_GRID_THRESHOLD = 500


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AxisSummary:
    name: str
    value_count: int


@dataclass(frozen=True, slots=True)
class GridPlanSummary:
    grid_id: str | None
    strategy: str
    parallelism: str
    expansion_count: int
    total_models: int | None
    subspace_depth: int
    axes: List[AxisSummary]
    warnings: List[str]


@dataclass(frozen=True, slots=True)
class GridResultSummary:
    grid_id: str
    model_count: int
    failure_count: int
    best_model_id: str | None
    best_metric: float | None
    error_types: dict[str, int]


# ---------------------------------------------------------------------------
# Summary builders
# ---------------------------------------------------------------------------

def summarize_plan(request: GridSearchRequest) -> GridPlanSummary:
    """Describe what a request will do, without dispatching anything."""
    warnings: list[str] = []

    space = request.space()
    criteria = request.search_criteria
    count = space.expansion_count()

    axis_sizes: dict[str, int] = {}
    _collect_axis_sizes(space, axis_sizes)
    axes = [AxisSummary(name=name, value_count=size) for name, size in axis_sizes.items()]

    total: int | None = count
    if isinstance(criteria, RandomDiscreteCriteria):
        total = min(criteria.max_models, count) if criteria.max_models > 0 else None

        if criteria.max_models == 0 and criteria.max_runtime_secs == 0 and not criteria.early_stopping_enabled:
            warnings.append(
                "RandomDiscrete without max_models, max_runtime_secs or early stopping "
                f"will build all {count} points"
            )
        if criteria.max_models > count:
            warnings.append(
                f"max_models ({criteria.max_models}) exceeds the number of points ({count})"
            )
    elif count > LARGE_GRID_THRESHOLD:
        warnings.append(f"High number of models ({count}); runtime may be long")

    for axis in axes:
        if axis.value_count == 1:
            warnings.append(f"hyperparameter '{axis.name}' has a single value")

    if request.recovery_dir is None:
        warnings.append("No recovery_dir set; a crash loses all progress")

    return GridPlanSummary(
        grid_id=request.grid_id,
        strategy=criteria.strategy,
        parallelism=str(request.parallelism_directive()),
        expansion_count=count,
        total_models=total,
        subspace_depth=space.depth(),
        axes=axes,
        warnings=warnings,
    )


def summarize_grid(
    grid: Grid,
    *,
    metric: str | None = None,
    decreasing: bool = False,
) -> GridResultSummary:
    error_types: dict[str, int] = {}
    for entry in grid.failures():
        error = entry.outcome.error
        key = error.error_type if error is not None else "UnknownError"
        error_types[key] = error_types.get(key, 0) + 1

    best_model_id: str | None = None
    best_metric: float | None = None
    if metric is not None:
        ranked = grid.sorted_by_metric(metric, decreasing=decreasing)
        if ranked:
            best_model_id = ranked[0].outcome.model_id
            best_metric = ranked[0].outcome.metrics[metric]

    return GridResultSummary(
        grid_id=grid.grid_id,
        model_count=grid.success_count,
        failure_count=grid.failure_count,
        best_model_id=best_model_id,
        best_metric=best_metric,
        error_types=error_types,
    )


def _collect_axis_sizes(space: HyperparameterSpace, sizes: dict[str, int]) -> None:
    for axis in space.axes:
        sizes[axis.name] = max(sizes.get(axis.name, 0), len(axis))
    for sub in space.subspaces:
        _collect_axis_sizes(sub, sizes)


# ---------------------------------------------------------------------------
# Pretty printers
# ---------------------------------------------------------------------------

def print_plan_summary(summary: GridPlanSummary) -> None:
    total = summary.total_models if summary.total_models is not None else "unknown"

    print(f"Grid: {summary.grid_id or '(generated at start)'}")
    print(f"Strategy: {summary.strategy}")
    print(f"Parallelism: {summary.parallelism}")
    print(f"Points in space: {summary.expansion_count}")
    print(f"Models to build: {total}")
    print(f"Subspace depth: {summary.subspace_depth}")
    print()

    if summary.warnings:
        print("Warnings:")
        for w in summary.warnings:
            print(f"  - {w}")
        print()

    print("Hyperparameters:")
    for a in summary.axes:
        print(f"  - {a.name}: {a.value_count} values")


def print_grid_summary(summary: GridResultSummary) -> None:
    print(f"Grid: {summary.grid_id}")
    print(f"Models built: {summary.model_count}")
    print(f"Failed builds: {summary.failure_count}")

    if summary.best_model_id is not None:
        print(f"Best model: {summary.best_model_id} ({summary.best_metric})")

    if summary.error_types:
        print()
        print("Failures:")
        for error_type, count in sorted(summary.error_types.items()):
            print(f"  - {error_type}: {count}")
