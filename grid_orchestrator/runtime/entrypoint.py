from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from grid_orchestrator.core.config.builder_config import BuilderConfig
from grid_orchestrator.core.config.grid_request import GridSearchRequest
from grid_orchestrator.core.domain.errors import ConfigValidationError, GridSearchError
from grid_orchestrator.core.domain.job_state_machine import JobState
from grid_orchestrator.core.events.event_bus import EventBus
from grid_orchestrator.core.events.sinks.file_recorder import FileRecorderSink
from grid_orchestrator.core.events.sinks.sink_logging import LoggingEventSink
from grid_orchestrator.runtime.mlflow_grid_logger import MlflowGridLogger
from grid_orchestrator.runtime.prometheus_metrics import PrometheusMetricsClient
from grid_orchestrator.search.grid_job import GridJob, JobStatus
from grid_orchestrator.search.summary import (
    GridResultSummary,
    print_grid_summary,
    print_plan_summary,
    summarize_grid,
    summarize_plan,
)

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigValidationError(f"cannot read config {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"config {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigValidationError(f"config {path} must be a JSON object, got {type(data).__name__}")
    return data


def _ranking(cfg: dict[str, Any], request: GridSearchRequest) -> tuple[str | None, bool]:
    """
    Metric used to pick the best model in the summary:
    explicit "rank_by" block, else the early stopping metric.
    """
    rank_by = cfg.get("rank_by") or {}
    metric = rank_by.get("metric") or getattr(request.search_criteria, "stopping_metric", None)
    return metric, bool(rank_by.get("decreasing", False))


def _report(
    *,
    status: JobStatus,
    summary: GridResultSummary,
    request: GridSearchRequest,
) -> None:
    # --- MLflow logging (side-effect only) ---
    try:
        MlflowGridLogger().log(
            status=status,
            summary=summary,
            strategy=request.search_criteria.strategy,
            parallelism=str(request.parallelism_directive()),
        )
    except Exception:  # pylint: disable=broad-exception-caught
        LOGGER.exception("MLflow logging failed")

    # --- Prometheus metrics (side-effect only) ---
    metrics = PrometheusMetricsClient()

    if metrics.is_enabled():
        try:
            metrics.record_job(status)
            metrics.push_all()
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception("Prometheus push failed")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Grid search orchestrator (plan or run a hyperparameter grid)"
    )

    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help='Path to JSON config with a "grid" request block and a "builder" block.',
    )

    parser.add_argument(
        "--plan",
        action="store_true",
        help="Validate the grid request and print the plan (no builds).",
    )

    parser.add_argument(
        "--run",
        action="store_true",
        help="Run the grid search with the configured builder.",
    )

    parser.add_argument(
        "--events",
        type=Path,
        default=None,
        help="Optional JSON lines file receiving every domain event.",
    )

    parser.add_argument(
        "--reset-failed",
        action="store_true",
        help="On resume, build points again whose previous build failed.",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level.",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.plan and not args.run:
        print("Error: one of --plan or --run must be specified.", file=sys.stderr)
        return EXIT_USAGE

    # ------------------------------------------------------------------
    # Load and validate config
    # ------------------------------------------------------------------

    try:
        cfg = _load_json(args.config)
        request = GridSearchRequest.from_raw(cfg.get("grid"))
    except GridSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    # Always show the plan
    print_plan_summary(summarize_plan(request))

    if args.plan and not args.run:
        return EXIT_OK

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    if "builder" not in cfg:
        print('Error: --run requires a "builder" block in the config.', file=sys.stderr)
        return EXIT_USAGE

    try:
        builder = BuilderConfig.model_validate(cfg["builder"]).create_builder()
    except ValidationError as exc:
        print(f"Error: invalid builder config: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except GridSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    bus = EventBus([LoggingEventSink(logging.getLogger("grid_orchestrator.events"))])
    if args.events is not None:
        bus.register(FileRecorderSink(args.events))

    try:
        job = GridJob(request, builder, event_bus=bus, reset_failed=args.reset_failed)
        job.start()
        try:
            status = job.join()
        except KeyboardInterrupt:
            LOGGER.warning("Interrupted; waiting for in-flight builds", extra={"grid_id": job.grid_id})
            job.cancel()
            status = job.join()
    except GridSearchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        bus.close()

    metric, decreasing = _ranking(cfg, request)
    summary = summarize_grid(job.result(), metric=metric, decreasing=decreasing)

    print()
    print_grid_summary(summary)
    print()
    print(f"State: {status.state.value} ({status.stop_reason or status.error})")

    _report(status=status, summary=summary, request=request)

    return EXIT_FAILED if status.state is JobState.FAILED else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
